from __future__ import annotations

import base64
import hashlib
import time

import pytest
from sqlalchemy import select

from statementvault.core.config import get_settings
from statementvault.core.errors import (
    CustomerInactiveError,
    CustomerNotFoundError,
    DuplicatePeriodError,
    StatementNotFoundError,
    StorageUnavailableError,
    ValidationFailedError,
)
from statementvault.domain.models import Statement
from statementvault.persistence.db import SessionLocal
from statementvault.providers.storage.memory import InMemoryObjectStore
from statementvault.providers.storage.s3 import S3ObjectStore
from statementvault.services import statements as statements_service
from statementvault.tests.utils.factories import audit_actions, create_test_customer, make_pdf


async def _upload(store: InMemoryObjectStore, customer_id: str, period: str, data: bytes, **kwargs):
    async with SessionLocal() as session:
        return await statements_service.upload_statement(
            session,
            customer_id=customer_id,
            period=period,
            file_name=kwargs.pop("file_name", "statement.pdf"),
            data=data,
            content_type=kwargs.pop("content_type", "application/pdf"),
            store=store,
            **kwargs,
        )


async def _list(customer_id: str):
    async with SessionLocal() as session:
        return await statements_service.list_statements(session, customer_id)


@pytest.mark.asyncio
async def test_upload_then_list_surfaces_one_entry_with_matching_digest() -> None:
    store = InMemoryObjectStore()
    customer_id = await create_test_customer()
    data = make_pdf(2048)

    summary = await _upload(store, customer_id, "2024-01", data, file_name="jan.pdf")

    listed = await _list(customer_id)
    assert [item.id for item in listed] == [summary.id]
    expected = base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")
    assert listed[0].checksum_sha256 == expected
    assert listed[0].size_bytes == 2048
    assert listed[0].file_name == "jan.pdf"

    async with SessionLocal() as session:
        row = (await session.execute(select(Statement).where(Statement.id == summary.id))).scalar_one()
    assert row.encrypted is True
    assert store.objects[row.storage_key].data == data
    assert row.storage_key.startswith(f"statements/{customer_id}/2024-01/")
    assert await audit_actions(customer_id) == ["UPLOAD"]


@pytest.mark.asyncio
async def test_duplicate_period_rejected_other_period_accepted() -> None:
    store = InMemoryObjectStore()
    customer_id = await create_test_customer()
    await _upload(store, customer_id, "2024-01", make_pdf())

    with pytest.raises(DuplicatePeriodError):
        await _upload(store, customer_id, "2024-01", make_pdf(600))
    await _upload(store, customer_id, "2024-02", make_pdf(700))

    assert len(store.objects) == 2
    assert [item.period for item in await _list(customer_id)] == ["2024-02", "2024-01"]


@pytest.mark.asyncio
async def test_same_period_allowed_for_different_customers() -> None:
    store = InMemoryObjectStore()
    first = await create_test_customer()
    second = await create_test_customer()
    await _upload(store, first, "2024-01", make_pdf())
    await _upload(store, second, "2024-01", make_pdf())
    assert len(await _list(first)) == 1
    assert len(await _list(second)) == 1


@pytest.mark.asyncio
async def test_forged_pdf_is_rejected_and_nothing_is_stored() -> None:
    store = InMemoryObjectStore()
    customer_id = await create_test_customer()
    with pytest.raises(ValidationFailedError):
        await _upload(store, customer_id, "2024-01", b"<html>not a pdf</html>")
    assert store.objects == {}
    assert await _list(customer_id) == []


@pytest.mark.asyncio
async def test_upload_requires_known_active_customer() -> None:
    store = InMemoryObjectStore()
    with pytest.raises(CustomerNotFoundError):
        await _upload(store, "nobody", "2024-01", make_pdf())
    inactive = await create_test_customer(active=False)
    with pytest.raises(CustomerInactiveError):
        await _upload(store, inactive, "2024-01", make_pdf())
    assert store.objects == {}


@pytest.mark.asyncio
async def test_period_is_required_and_bounded() -> None:
    store = InMemoryObjectStore()
    customer_id = await create_test_customer()
    with pytest.raises(ValidationFailedError):
        await _upload(store, customer_id, "   ", make_pdf())
    with pytest.raises(ValidationFailedError):
        await _upload(store, customer_id, "x" * 33, make_pdf())


@pytest.mark.asyncio
async def test_storage_write_failure_leaves_no_metadata() -> None:
    store = InMemoryObjectStore()
    store.fail_put = True
    customer_id = await create_test_customer()
    with pytest.raises(StorageUnavailableError):
        await _upload(store, customer_id, "2024-01", make_pdf())
    assert await _list(customer_id) == []
    assert await audit_actions(customer_id) == []


class _HangingS3Client:
    def __init__(self, delay_s: float) -> None:
        self.delay_s = delay_s
        self.calls = 0

    def put_object(self, **kwargs) -> dict:  # noqa: ANN003
        self.calls += 1
        time.sleep(self.delay_s)
        return {"ETag": '"late"'}


@pytest.mark.asyncio
async def test_storage_timeout_fails_upload_without_metadata(monkeypatch) -> None:
    monkeypatch.setenv("STORAGE_TIMEOUT_MS", "100")
    monkeypatch.setenv("STORAGE_RETRY_MAX_ATTEMPTS", "1")
    get_settings.cache_clear()
    client = _HangingS3Client(delay_s=1.0)
    store = S3ObjectStore("statements", "af-south-1", client=client)
    customer_id = await create_test_customer()

    started = time.monotonic()
    with pytest.raises(StorageUnavailableError):
        await _upload(store, customer_id, "2024-01", make_pdf())
    assert time.monotonic() - started < 0.9
    assert client.calls == 1
    assert await _list(customer_id) == []
    assert await audit_actions(customer_id) == []


@pytest.mark.asyncio
async def test_file_name_is_sanitized_in_storage_key_only() -> None:
    store = InMemoryObjectStore()
    customer_id = await create_test_customer()
    summary = await _upload(store, customer_id, "2024/01", make_pdf(), file_name="../../etc/my file.pdf")
    assert summary.file_name == "my file.pdf"
    (key,) = store.objects.keys()
    assert "/../" not in key
    assert key.startswith(f"statements/{customer_id}/2024_01/")
    assert key.endswith("_my_file.pdf")


@pytest.mark.asyncio
async def test_list_orders_by_period_descending() -> None:
    store = InMemoryObjectStore()
    customer_id = await create_test_customer()
    for period in ["2023-11", "2024-02", "2023-12", "2024-01"]:
        await _upload(store, customer_id, period, make_pdf())
    assert [item.period for item in await _list(customer_id)] == ["2024-02", "2024-01", "2023-12", "2023-11"]


@pytest.mark.asyncio
async def test_get_hides_other_customers_statements() -> None:
    store = InMemoryObjectStore()
    owner = await create_test_customer()
    other = await create_test_customer()
    summary = await _upload(store, owner, "2024-01", make_pdf())
    async with SessionLocal() as session:
        assert (await statements_service.get_statement(session, owner, summary.id)).id == summary.id
        with pytest.raises(StatementNotFoundError):
            await statements_service.get_statement(session, other, summary.id)


@pytest.mark.asyncio
async def test_delete_removes_object_and_metadata() -> None:
    store = InMemoryObjectStore()
    customer_id = await create_test_customer()
    summary = await _upload(store, customer_id, "2024-01", make_pdf())

    async with SessionLocal() as session:
        await statements_service.delete_statement(session, customer_id=customer_id, statement_id=summary.id, store=store)

    assert store.objects == {}
    async with SessionLocal() as session:
        with pytest.raises(StatementNotFoundError):
            await statements_service.get_statement(session, customer_id, summary.id)
        with pytest.raises(StatementNotFoundError):
            await statements_service.delete_statement(
                session, customer_id=customer_id, statement_id=summary.id, store=store
            )
    assert await audit_actions(customer_id) == ["UPLOAD", "DELETE"]


@pytest.mark.asyncio
async def test_delete_storage_failure_keeps_metadata() -> None:
    store = InMemoryObjectStore()
    customer_id = await create_test_customer()
    summary = await _upload(store, customer_id, "2024-01", make_pdf())
    store.fail_delete = True

    async with SessionLocal() as session:
        with pytest.raises(StorageUnavailableError):
            await statements_service.delete_statement(
                session, customer_id=customer_id, statement_id=summary.id, store=store
            )

    assert len(store.objects) == 1
    assert [item.id for item in await _list(customer_id)] == [summary.id]
    assert await audit_actions(customer_id) == ["UPLOAD"]


@pytest.mark.asyncio
async def test_delete_by_non_owner_is_not_found() -> None:
    store = InMemoryObjectStore()
    owner = await create_test_customer()
    other = await create_test_customer()
    summary = await _upload(store, owner, "2024-01", make_pdf())
    async with SessionLocal() as session:
        with pytest.raises(StatementNotFoundError):
            await statements_service.delete_statement(session, customer_id=other, statement_id=summary.id, store=store)
    assert len(store.objects) == 1
