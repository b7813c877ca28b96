from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.apps.api.deps import get_db, require_customer_id
from statementvault.apps.api.response import DEFAULT_ERROR_RESPONSES
from statementvault.services.audit import list_customer_audit_trail


router = APIRouter(prefix="/audit", tags=["audit"], responses=DEFAULT_ERROR_RESPONSES)


class AuditLogResponse(BaseModel):
    id: int
    occurred_at: str
    action: str
    resource_type: str
    resource_id: str | None
    ip_address: str | None
    user_agent: str | None
    details: str | None


class AuditLogPage(BaseModel):
    items: list[AuditLogResponse]
    next_offset: int | None


def _to_response(row) -> AuditLogResponse:
    return AuditLogResponse(
        id=row.id,
        occurred_at=row.occurred_at.isoformat(),
        action=row.action,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        details=row.details,
    )


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    action: str | None = None,
    occurred_from: datetime | None = Query(default=None, alias="from"),
    occurred_to: datetime | None = Query(default=None, alias="to"),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=50, ge=1, le=200),
    customer_id: str = Depends(require_customer_id),
    db: AsyncSession = Depends(get_db),
) -> AuditLogPage:
    # Customers only ever see their own trail; newest first.
    rows = await list_customer_audit_trail(
        db,
        customer_id=customer_id,
        occurred_from=occurred_from,
        occurred_to=occurred_to,
        action=action,
        offset=offset,
        limit=limit,
    )
    next_offset = offset + limit if len(rows) == limit else None
    return AuditLogPage(items=[_to_response(row) for row in rows], next_offset=next_offset)
