from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from statementvault.apps.api.errors import (
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
    vault_error_handler,
)
from statementvault.apps.api.routes.audit import router as audit_router
from statementvault.apps.api.routes.health import router as health_router
from statementvault.apps.api.routes.statements import router as statements_router
from statementvault.core.config import get_settings
from statementvault.core.errors import VaultError
from statementvault.core.logging import configure_logging
from statementvault.persistence.db import engine
from statementvault.workers.token_sweeper import TokenSweeper


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    # The sweeper shares the API process unless disabled for a dedicated worker.
    sweeper: TokenSweeper | None = None
    if get_settings().token_sweeper_enabled:
        sweeper = TokenSweeper()
        sweeper.start()
    app.state.token_sweeper = sweeper
    try:
        yield
    finally:
        if sweeper is not None:
            await sweeper.stop()
        await engine.dispose()


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="StatementVault API", lifespan=lifespan)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    @app.exception_handler(VaultError)
    async def _vault_error_handler(request: Request, exc: VaultError):
        return await vault_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    app.include_router(statements_router, prefix="/api")
    app.include_router(audit_router, prefix="/api")
    app.include_router(health_router)
    return app


app = create_app()
