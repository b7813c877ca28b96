from __future__ import annotations

from datetime import datetime

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.domain.models import DownloadToken


async def create_token(
    session: AsyncSession,
    *,
    token_id: str,
    token: str,
    statement_id: str,
    customer_id: str,
    expires_at: datetime,
    created_at: datetime,
) -> DownloadToken:
    row = DownloadToken(
        id=token_id,
        token=token,
        statement_id=statement_id,
        customer_id=customer_id,
        expires_at=expires_at,
        used=False,
        used_at=None,
        created_at=created_at,
    )
    session.add(row)
    await session.flush()
    return row


async def count_active_tokens(session: AsyncSession, customer_id: str, *, now: datetime) -> int:
    # Active means redeemable right now: unused and not yet expired.
    result = await session.execute(
        select(func.count())
        .select_from(DownloadToken)
        .where(
            DownloadToken.customer_id == customer_id,
            DownloadToken.used.is_(False),
            DownloadToken.expires_at > now,
        )
    )
    return int(result.scalar() or 0)


async def consume_token(session: AsyncSession, token: str, *, now: datetime) -> DownloadToken | None:
    # Compare-and-set on used=false; exactly one concurrent caller can see rowcount == 1.
    result = await session.execute(
        update(DownloadToken)
        .where(
            DownloadToken.token == token,
            DownloadToken.used.is_(False),
            DownloadToken.expires_at > now,
        )
        .values(used=True, used_at=now)
        .execution_options(synchronize_session=False)
    )
    if (result.rowcount or 0) != 1:
        return None
    return await get_token(session, token)


async def get_token(session: AsyncSession, token: str) -> DownloadToken | None:
    result = await session.execute(select(DownloadToken).where(DownloadToken.token == token))
    return result.scalar_one_or_none()


async def delete_tokens_expired_before(session: AsyncSession, cutoff: datetime) -> int:
    result = await session.execute(delete(DownloadToken).where(DownloadToken.expires_at < cutoff))
    return int(result.rowcount or 0)
