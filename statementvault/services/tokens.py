from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import secrets
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.core.config import get_settings
from statementvault.core.errors import (
    InternalError,
    InvalidOrExpiredTokenError,
    RateLimitedError,
    StatementNotFoundError,
    StorageUnavailableError,
)
from statementvault.persistence.repos import customers as customers_repo
from statementvault.persistence.repos import statements as statements_repo
from statementvault.persistence.repos import tokens as tokens_repo
from statementvault.providers.storage.base import ObjectStore
from statementvault.providers.storage.factory import get_object_store
from statementvault.services import audit
from statementvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

TOKEN_BYTES = 32
# token_urlsafe(32) yields 43 characters; anything far longer is not ours.
_TOKEN_MAX_LENGTH = 128


@dataclass(frozen=True)
class IssuedLink:
    download_path: str
    expires_at: datetime
    valid_for_minutes: int
    token: str = field(repr=False)


@dataclass(frozen=True)
class SignedDownload:
    url: str = field(repr=False)
    expires_in_s: int
    file_name: str
    statement_id: str


def generate_token_value() -> str:
    # 256 bits from the OS CSPRNG, URL-safe base64 without padding.
    return secrets.token_urlsafe(TOKEN_BYTES)


def download_path_for(token: str) -> str:
    prefix = get_settings().download_path_prefix.rstrip("/")
    return f"{prefix}/{token}"


async def issue_link(
    session: AsyncSession,
    *,
    customer_id: str,
    statement_id: str,
    context: audit.RequestContext | None = None,
) -> IssuedLink:
    settings = get_settings()
    statement = await statements_repo.get_statement(session, customer_id, statement_id)
    if statement is None:
        raise StatementNotFoundError("statement not found")

    # Serialize issuance per customer where row locks exist so the ceiling holds exactly.
    await customers_repo.get_customer(session, customer_id, for_update=True)
    now = datetime.now(timezone.utc)
    max_active = settings.download_max_active_tokens
    active = await tokens_repo.count_active_tokens(session, customer_id, now=now)
    if active >= max_active:
        await session.rollback()
        increment_counter("download_links_rate_limited_total")
        logger.info("download_link_rate_limited customer_id=%s", customer_id)
        raise RateLimitedError(
            "maximum number of active download links reached",
            details={"max_active": max_active},
        )

    valid_for = settings.download_link_expiration_minutes
    expires_at = now + timedelta(minutes=valid_for)
    token_id = str(uuid4())
    value: str | None = None
    for attempt in range(1, max(settings.token_generation_max_attempts, 1) + 1):
        candidate = generate_token_value()
        try:
            async with session.begin_nested():
                await tokens_repo.create_token(
                    session,
                    token_id=token_id,
                    token=candidate,
                    statement_id=statement_id,
                    customer_id=customer_id,
                    expires_at=expires_at,
                    created_at=now,
                )
        except IntegrityError:
            # Never reuse a colliding value; draw fresh randomness.
            logger.warning("download_token_collision attempt=%s", attempt)
            continue
        value = candidate
        break
    if value is None:
        await session.rollback()
        raise InternalError("could not generate a unique download token")

    await audit.record_event(
        session,
        customer_id=customer_id,
        action=audit.GENERATE_LINK,
        resource_type=audit.RESOURCE_STATEMENT,
        resource_id=statement_id,
        context=context,
        details=f"token_id={token_id} valid_for_minutes={valid_for}",
    )
    await session.commit()

    increment_counter("download_links_issued_total")
    logger.info("download_link_issued token_id=%s statement_id=%s customer_id=%s", token_id, statement_id, customer_id)
    return IssuedLink(
        download_path=download_path_for(value),
        expires_at=expires_at,
        valid_for_minutes=valid_for,
        token=value,
    )


async def _refuse(context: audit.RequestContext | None) -> InvalidOrExpiredTokenError:
    increment_counter("downloads_denied_total")
    logger.info("download_token_refused")
    await audit.record_detached_event(
        customer_id=None,
        action=audit.ACCESS_DENIED,
        resource_type=audit.RESOURCE_DOWNLOAD_TOKEN,
        context=context,
        details="invalid, expired or already used download token",
    )
    return InvalidOrExpiredTokenError("download link is invalid or has expired")


async def redeem_token(
    session: AsyncSession,
    token_value: str,
    *,
    context: audit.RequestContext | None = None,
    store: ObjectStore | None = None,
) -> SignedDownload:
    """Consume a download token exactly once and mint a signed object URL.

    Unknown, expired and already-used tokens raise the same
    InvalidOrExpiredTokenError. The used flag is committed before the store is
    asked to sign, so a failure after that point leaves the token spent.
    """
    settings = get_settings()
    if not token_value or len(token_value) > _TOKEN_MAX_LENGTH:
        raise await _refuse(context)

    now = datetime.now(timezone.utc)
    token = await tokens_repo.consume_token(session, token_value, now=now)
    if token is None:
        await session.rollback()
        raise await _refuse(context)

    statement = await statements_repo.get_statement(session, token.customer_id, token.statement_id)
    if statement is None:
        # The token stays spent; the statement it pointed at is gone.
        await audit.record_event(
            session,
            customer_id=token.customer_id,
            action=audit.ACCESS_DENIED,
            resource_type=audit.RESOURCE_STATEMENT,
            resource_id=token.statement_id,
            context=context,
            details=f"token_id={token.id} statement deleted",
        )
        await session.commit()
        increment_counter("downloads_denied_total")
        raise StatementNotFoundError("statement not found")

    storage_key = statement.storage_key
    file_name = statement.file_name
    content_type = statement.content_type
    await audit.record_event(
        session,
        customer_id=token.customer_id,
        action=audit.DOWNLOAD,
        resource_type=audit.RESOURCE_STATEMENT,
        resource_id=statement.id,
        context=context,
        details=f"token_id={token.id}",
    )
    await session.commit()

    store = store or get_object_store()
    ttl_s = settings.download_presign_ttl_s
    try:
        url = await store.presign_get(storage_key, file_name=file_name, content_type=content_type, ttl_s=ttl_s)
    except StorageUnavailableError:
        # The DOWNLOAD fact is already committed; record that no URL was handed out.
        increment_counter("downloads_presign_failed_total")
        await audit.record_detached_event(
            customer_id=token.customer_id,
            action=audit.ACCESS_DENIED,
            resource_type=audit.RESOURCE_STATEMENT,
            resource_id=statement.id,
            context=context,
            details=f"token_id={token.id} signed url unavailable",
        )
        raise
    increment_counter("downloads_redeemed_total")
    logger.info("download_token_redeemed token_id=%s statement_id=%s", token.id, statement.id)
    return SignedDownload(url=url, expires_in_s=ttl_s, file_name=file_name, statement_id=statement.id)
