from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.core.config import get_settings
from statementvault.persistence.repos import tokens as tokens_repo


def token_retention_cutoff(now: datetime | None = None) -> datetime:
    # Expired tokens stay queryable for the retention window before removal.
    hours = max(0, int(get_settings().token_retention_hours))
    return (now or datetime.now(timezone.utc)) - timedelta(hours=hours)


async def prune_expired_tokens(session: AsyncSession, *, now: datetime | None = None) -> int:
    # Delete tokens whose expiry is older than the retention cutoff; the caller commits.
    return await tokens_repo.delete_tokens_expired_before(session, token_retention_cutoff(now))
