from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from uuid import uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from statementvault.core.config import get_settings
from statementvault.core.errors import (
    AuditWriteError,
    CustomerInactiveError,
    CustomerNotFoundError,
    DuplicatePeriodError,
    StatementNotFoundError,
    StorageUnavailableError,
    ValidationFailedError,
)
from statementvault.domain.models import Statement
from statementvault.persistence.repos import customers as customers_repo
from statementvault.persistence.repos import statements as statements_repo
from statementvault.providers.storage.base import ObjectStore
from statementvault.providers.storage.factory import get_object_store
from statementvault.services import audit
from statementvault.services.integrity import verify_upload
from statementvault.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

DEFAULT_FILE_NAME = "statement.pdf"
_FILE_NAME_MAX = 255
_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9.-]")


@dataclass(frozen=True)
class StatementSummary:
    id: str
    file_name: str
    period: str
    size_bytes: int
    created_at: datetime
    content_type: str
    checksum_sha256: str


def to_summary(row: Statement) -> StatementSummary:
    return StatementSummary(
        id=row.id,
        file_name=row.file_name,
        period=row.period,
        size_bytes=row.size_bytes,
        created_at=row.created_at,
        content_type=row.content_type,
        checksum_sha256=row.checksum_sha256,
    )


def sanitize_key_component(value: str) -> str:
    # Everything outside [A-Za-z0-9.-] becomes "_", which also neutralizes "/" and "\".
    return _UNSAFE_KEY_CHARS.sub("_", value)


def clean_file_name(file_name: str | None) -> str:
    # Keep only the last path segment of client-supplied names.
    if not file_name:
        return DEFAULT_FILE_NAME
    name = re.split(r"[\\/]", file_name)[-1].strip()
    if not name or name in {".", ".."}:
        return DEFAULT_FILE_NAME
    return name[:_FILE_NAME_MAX]


def build_storage_key(customer_id: str, period: str, file_name: str) -> str:
    # A fresh random segment keeps keys unpredictable and collision-free for re-uploads.
    return "statements/{customer}/{period}/{nonce}_{name}".format(
        customer=sanitize_key_component(customer_id),
        period=sanitize_key_component(period),
        nonce=uuid4().hex,
        name=sanitize_key_component(file_name),
    )


def _validate_period(period: str | None) -> str:
    value = (period or "").strip()
    if not value:
        raise ValidationFailedError("statement period is required")
    max_length = get_settings().statement_period_max_length
    if len(value) > max_length:
        raise ValidationFailedError(
            "statement period is too long",
            details={"max_length": max_length},
        )
    return value


async def _discard_object(store: ObjectStore, storage_key: str) -> None:
    # Orphan objects are tolerated; removing them here is best effort.
    try:
        await store.delete_object(storage_key)
    except StorageUnavailableError:
        logger.warning("orphan_object_left storage_key=%s", storage_key)


async def upload_statement(
    session: AsyncSession,
    *,
    customer_id: str,
    period: str,
    file_name: str | None,
    data: bytes,
    content_type: str | None,
    declared_size: int | None = None,
    context: audit.RequestContext | None = None,
    store: ObjectStore | None = None,
) -> StatementSummary:
    period = _validate_period(period)
    customer = await customers_repo.get_customer(session, customer_id)
    if customer is None:
        raise CustomerNotFoundError("customer not found")
    if not customer.active:
        raise CustomerInactiveError("customer account is inactive")

    verified = verify_upload(data, content_type, declared_size)
    if await statements_repo.get_statement_for_period(session, customer_id, period) is not None:
        raise DuplicatePeriodError(
            "a statement already exists for this period",
            details={"period": period},
        )
    # Release the read transaction before the slow object store call.
    await session.commit()

    store = store or get_object_store()
    name = clean_file_name(file_name)
    statement_id = str(uuid4())
    storage_key = build_storage_key(customer_id, period, name)
    # Object first: a failed write leaves no metadata behind.
    await store.put_object(
        storage_key,
        data,
        content_type=verified.content_type,
        checksum_sha256=verified.checksum_sha256,
    )

    now = datetime.now(timezone.utc)
    try:
        row = await statements_repo.create_statement(
            session,
            statement_id=statement_id,
            customer_id=customer_id,
            storage_key=storage_key,
            file_name=name,
            size_bytes=verified.size_bytes,
            period=period,
            content_type=verified.content_type,
            checksum_sha256=verified.checksum_sha256,
            created_at=now,
        )
        await audit.record_event(
            session,
            customer_id=customer_id,
            action=audit.UPLOAD,
            resource_type=audit.RESOURCE_STATEMENT,
            resource_id=statement_id,
            context=context,
            details=f"period={period} size_bytes={verified.size_bytes}",
        )
        await session.commit()
    except IntegrityError as exc:
        # Lost a race with a concurrent upload for the same period.
        await session.rollback()
        await _discard_object(store, storage_key)
        raise DuplicatePeriodError(
            "a statement already exists for this period",
            details={"period": period},
        ) from exc
    except AuditWriteError:
        await session.rollback()
        await _discard_object(store, storage_key)
        raise

    increment_counter("statements_uploaded_total")
    logger.info(
        "statement_uploaded statement_id=%s customer_id=%s period=%s size_bytes=%s",
        statement_id,
        customer_id,
        period,
        verified.size_bytes,
    )
    return to_summary(row)


async def list_statements(session: AsyncSession, customer_id: str) -> list[StatementSummary]:
    rows = await statements_repo.list_statements(session, customer_id)
    return [to_summary(row) for row in rows]


async def get_statement(session: AsyncSession, customer_id: str, statement_id: str) -> StatementSummary:
    row = await statements_repo.get_statement(session, customer_id, statement_id)
    if row is None:
        raise StatementNotFoundError("statement not found")
    return to_summary(row)


async def delete_statement(
    session: AsyncSession,
    *,
    customer_id: str,
    statement_id: str,
    context: audit.RequestContext | None = None,
    store: ObjectStore | None = None,
) -> None:
    row = await statements_repo.get_statement(session, customer_id, statement_id)
    if row is None:
        raise StatementNotFoundError("statement not found")
    storage_key = row.storage_key
    await session.commit()

    store = store or get_object_store()
    # Never drop metadata for an object that may still exist; a failure here keeps the row.
    await store.delete_object(storage_key)

    try:
        deleted = await statements_repo.delete_statement(session, statement_id)
        if deleted == 0:
            await session.rollback()
            raise StatementNotFoundError("statement not found")
        await audit.record_event(
            session,
            customer_id=customer_id,
            action=audit.DELETE,
            resource_type=audit.RESOURCE_STATEMENT,
            resource_id=statement_id,
            context=context,
            details=f"storage_key={storage_key}",
        )
        await session.commit()
    except AuditWriteError:
        await session.rollback()
        logger.error("statement_metadata_orphaned statement_id=%s storage_key=%s", statement_id, storage_key)
        raise

    increment_counter("statements_deleted_total")
    logger.info("statement_deleted statement_id=%s customer_id=%s", statement_id, customer_id)
