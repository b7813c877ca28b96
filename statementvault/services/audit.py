from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from statementvault.core.config import get_settings
from statementvault.core.errors import AuditWriteError
from statementvault.domain.models import AuditLog
from statementvault.persistence.db import SessionLocal
from statementvault.persistence.repos import audit as audit_repo


logger = logging.getLogger(__name__)

UPLOAD = "UPLOAD"
GENERATE_LINK = "GENERATE_LINK"
DOWNLOAD = "DOWNLOAD"
DELETE = "DELETE"
ACCESS_DENIED = "ACCESS_DENIED"

RESOURCE_STATEMENT = "ACCOUNT_STATEMENT"
RESOURCE_DOWNLOAD_TOKEN = "DOWNLOAD_TOKEN"

_IP_MAX = 45
_USER_AGENT_MAX = 500
_DETAILS_MAX = 1000


@dataclass(frozen=True)
class RequestContext:
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


def _clip(value: str | None, limit: int) -> str | None:
    if value is None:
        return None
    return value[:limit]


def resolve_client_ip(request: Request) -> str | None:
    # Proxies append hops; the first X-Forwarded-For entry is the original client.
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("X-Real-IP")
    if real_ip and real_ip.strip():
        return real_ip.strip()
    return request.client.host if request.client else None


def get_request_context(request: Request | None) -> RequestContext:
    # Extract client hints without persisting credentials.
    if request is None:
        return RequestContext()
    return RequestContext(
        ip_address=resolve_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        request_id=request.headers.get("X-Request-Id"),
    )


def _build_row(
    *,
    customer_id: str | None,
    action: str,
    resource_type: str,
    resource_id: str | None,
    context: RequestContext | None,
    details: str | None,
    occurred_at: datetime | None,
) -> AuditLog:
    context = context or RequestContext()
    return AuditLog(
        customer_id=customer_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        ip_address=_clip(context.ip_address, _IP_MAX),
        user_agent=_clip(context.user_agent, _USER_AGENT_MAX),
        details=_clip(details, _DETAILS_MAX),
        occurred_at=occurred_at or datetime.now(timezone.utc),
    )


async def record_event(
    session: AsyncSession,
    *,
    customer_id: str | None,
    action: str,
    resource_type: str,
    resource_id: str | None = None,
    context: RequestContext | None = None,
    details: str | None = None,
    occurred_at: datetime | None = None,
) -> None:
    """Append an audit row inside the caller's transaction.

    The caller commits. Under ``audit_fail_mode=closed`` a write failure raises
    AuditWriteError so the caller rolls the action back; under ``open`` the row
    is isolated in a savepoint and a failure is only logged.
    """
    row = _build_row(
        customer_id=customer_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        context=context,
        details=details,
        occurred_at=occurred_at,
    )
    fail_open = get_settings().audit_fail_mode.lower() == "open"
    if fail_open:
        try:
            async with session.begin_nested():
                session.add(row)
        except SQLAlchemyError as exc:
            logger.warning(
                "audit_write_failed action=%s resource_id=%s mode=open",
                action,
                resource_id,
                exc_info=exc,
            )
        return

    try:
        session.add(row)
        await session.flush()
    except SQLAlchemyError as exc:
        logger.error("audit_write_failed action=%s resource_id=%s mode=closed", action, resource_id)
        raise AuditWriteError("audit record could not be written") from exc


async def record_detached_event(
    *,
    customer_id: str | None,
    action: str,
    resource_type: str,
    resource_id: str | None = None,
    context: RequestContext | None = None,
    details: str | None = None,
) -> None:
    # Refusals have no transaction of their own to join; write in a fresh session.
    row = _build_row(
        customer_id=customer_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        context=context,
        details=details,
        occurred_at=None,
    )
    async with SessionLocal() as audit_session:
        try:
            audit_session.add(row)
            await audit_session.commit()
        except SQLAlchemyError as exc:
            await audit_session.rollback()
            logger.error("audit_write_failed action=%s resource_id=%s mode=detached", action, resource_id, exc_info=exc)


def _as_utc(value: datetime | None) -> datetime | None:
    # Stored timestamps are UTC; normalize client-supplied offsets before comparing.
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc)


async def list_customer_audit_trail(
    session: AsyncSession,
    *,
    customer_id: str,
    occurred_from: datetime | None = None,
    occurred_to: datetime | None = None,
    action: str | None = None,
    offset: int = 0,
    limit: int = 50,
) -> list[AuditLog]:
    return await audit_repo.list_audit_logs(
        session,
        customer_id=customer_id,
        action=action,
        occurred_from=_as_utc(occurred_from),
        occurred_to=_as_utc(occurred_to),
        offset=offset,
        limit=limit,
    )
