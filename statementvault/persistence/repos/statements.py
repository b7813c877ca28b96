from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.domain.models import Statement


async def create_statement(
    session: AsyncSession,
    *,
    statement_id: str,
    customer_id: str,
    storage_key: str,
    file_name: str,
    size_bytes: int,
    period: str,
    content_type: str,
    checksum_sha256: str,
    created_at: datetime,
) -> Statement:
    # Flush immediately so unique-constraint races surface inside the caller's transaction.
    statement = Statement(
        id=statement_id,
        customer_id=customer_id,
        storage_key=storage_key,
        file_name=file_name,
        size_bytes=size_bytes,
        period=period,
        content_type=content_type,
        checksum_sha256=checksum_sha256,
        encrypted=True,
        created_at=created_at,
        updated_at=created_at,
    )
    session.add(statement)
    await session.flush()
    return statement


async def get_statement(session: AsyncSession, customer_id: str, statement_id: str) -> Statement | None:
    # Return None for ownership mismatch to keep 404 semantics.
    result = await session.execute(
        select(Statement).where(Statement.id == statement_id, Statement.customer_id == customer_id)
    )
    return result.scalar_one_or_none()


async def get_statement_for_period(session: AsyncSession, customer_id: str, period: str) -> Statement | None:
    result = await session.execute(
        select(Statement).where(Statement.customer_id == customer_id, Statement.period == period)
    )
    return result.scalar_one_or_none()


async def list_statements(session: AsyncSession, customer_id: str) -> list[Statement]:
    # Newest period first; ties fall back to creation time.
    result = await session.execute(
        select(Statement)
        .where(Statement.customer_id == customer_id)
        .order_by(Statement.period.desc(), Statement.created_at.desc(), Statement.id.desc())
    )
    return list(result.scalars().all())


async def delete_statement(session: AsyncSession, statement_id: str) -> int:
    result = await session.execute(delete(Statement).where(Statement.id == statement_id))
    return int(result.rowcount or 0)
