from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.domain.models import AuditLog


async def list_audit_logs(
    session: AsyncSession,
    *,
    customer_id: str,
    action: str | None = None,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditLog]:
    # Scope audit queries to one customer so trails never leak across accounts.
    stmt = select(AuditLog).where(AuditLog.customer_id == customer_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if occurred_from:
        stmt = stmt.where(AuditLog.occurred_at >= occurred_from)
    if occurred_to:
        stmt = stmt.where(AuditLog.occurred_at <= occurred_to)

    stmt = stmt.order_by(AuditLog.occurred_at.desc(), AuditLog.id.desc())
    stmt = stmt.offset(offset).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())
