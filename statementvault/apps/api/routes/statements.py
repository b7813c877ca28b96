from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from fastapi.responses import RedirectResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.apps.api.deps import get_audit_context, get_db, get_store, require_customer_id
from statementvault.apps.api.response import DEFAULT_ERROR_RESPONSES
from statementvault.core.config import get_settings
from statementvault.providers.storage.base import ObjectStore
from statementvault.services.audit import RequestContext
from statementvault.services import statements as statements_service
from statementvault.services import tokens as tokens_service


router = APIRouter(prefix="/statements", tags=["statements"], responses=DEFAULT_ERROR_RESPONSES)


class StatementResponse(BaseModel):
    id: str
    file_name: str
    period: str
    size_bytes: int
    content_type: str
    checksum_sha256: str
    created_at: str


class GenerateLinkRequest(BaseModel):
    statement_id: str

    model_config = {"extra": "forbid"}


class DownloadLinkResponse(BaseModel):
    download_path: str
    expires_at: str
    valid_for_minutes: int


def _to_response(summary: statements_service.StatementSummary) -> StatementResponse:
    # Serialize datetimes to ISO 8601 for API clients.
    return StatementResponse(
        id=summary.id,
        file_name=summary.file_name,
        period=summary.period,
        size_bytes=summary.size_bytes,
        content_type=summary.content_type,
        checksum_sha256=summary.checksum_sha256,
        created_at=summary.created_at.isoformat(),
    )


@router.post("/upload", status_code=status.HTTP_201_CREATED, response_model=StatementResponse)
async def upload_statement(
    file: UploadFile = File(...),
    statement_period: str = Form(...),
    customer_id: str = Depends(require_customer_id),
    context: RequestContext = Depends(get_audit_context),
    store: ObjectStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
) -> StatementResponse:
    # Read at most one byte past the ceiling; the verifier rejects anything larger.
    limit = get_settings().upload_max_bytes
    data = await file.read(limit + 1)
    summary = await statements_service.upload_statement(
        db,
        customer_id=customer_id,
        period=statement_period,
        file_name=file.filename,
        data=data,
        content_type=file.content_type,
        declared_size=file.size,
        context=context,
        store=store,
    )
    return _to_response(summary)


@router.get("", response_model=list[StatementResponse])
async def list_statements(
    customer_id: str = Depends(require_customer_id),
    db: AsyncSession = Depends(get_db),
) -> list[StatementResponse]:
    summaries = await statements_service.list_statements(db, customer_id)
    return [_to_response(summary) for summary in summaries]


@router.post("/generate-link", response_model=DownloadLinkResponse)
async def generate_download_link(
    payload: GenerateLinkRequest,
    customer_id: str = Depends(require_customer_id),
    context: RequestContext = Depends(get_audit_context),
    db: AsyncSession = Depends(get_db),
) -> DownloadLinkResponse:
    link = await tokens_service.issue_link(
        db,
        customer_id=customer_id,
        statement_id=payload.statement_id,
        context=context,
    )
    return DownloadLinkResponse(
        download_path=link.download_path,
        expires_at=link.expires_at.isoformat(),
        valid_for_minutes=link.valid_for_minutes,
    )


@router.get("/download/{token}", status_code=status.HTTP_302_FOUND, response_class=RedirectResponse)
async def download_statement(
    token: str,
    context: RequestContext = Depends(get_audit_context),
    store: ObjectStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
) -> RedirectResponse:
    # Bearer-token route: no customer header, the token carries the authority.
    signed = await tokens_service.redeem_token(db, token, context=context, store=store)
    return RedirectResponse(
        url=signed.url,
        status_code=status.HTTP_302_FOUND,
        headers={"Cache-Control": "no-store", "Referrer-Policy": "no-referrer"},
    )


@router.get("/{statement_id}", response_model=StatementResponse)
async def get_statement(
    statement_id: str,
    customer_id: str = Depends(require_customer_id),
    db: AsyncSession = Depends(get_db),
) -> StatementResponse:
    summary = await statements_service.get_statement(db, customer_id, statement_id)
    return _to_response(summary)


@router.delete("/{statement_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_statement(
    statement_id: str,
    customer_id: str = Depends(require_customer_id),
    context: RequestContext = Depends(get_audit_context),
    store: ObjectStore = Depends(get_store),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await statements_service.delete_statement(
        db,
        customer_id=customer_id,
        statement_id=statement_id,
        context=context,
        store=store,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
