from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.persistence.db import get_session
from statementvault.providers.storage.base import ObjectStore
from statementvault.providers.storage.factory import get_object_store
from statementvault.services.audit import RequestContext, get_request_context


_CUSTOMER_ID_MAX = 128


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


def get_store() -> ObjectStore:
    return get_object_store()


def get_audit_context(request: Request) -> RequestContext:
    return get_request_context(request)


async def require_customer_id(
    x_customer_id: str | None = Header(default=None, alias="X-Customer-Id"),
) -> str:
    # Authentication happens upstream; the gateway forwards the verified customer id.
    value = (x_customer_id or "").strip()
    if not value or len(value) > _CUSTOMER_ID_MAX:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "Missing customer identity"},
        )
    return value
