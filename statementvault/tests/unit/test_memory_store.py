from __future__ import annotations

import pytest

from statementvault.core.errors import StorageUnavailableError
from statementvault.providers.storage.memory import InMemoryObjectStore


@pytest.mark.asyncio
async def test_memory_store_round_trip_and_failure_switches() -> None:
    store = InMemoryObjectStore("bucket")
    await store.put_object("k1", b"%PDF-1", content_type="application/pdf", checksum_sha256="x")
    assert store.objects["k1"].data == b"%PDF-1"

    url = await store.presign_get("k1", file_name="jan.pdf", content_type="application/pdf", ttl_s=300)
    assert url.startswith("memory://bucket/k1?")
    assert "expires_in=300" in url

    store.fail_delete = True
    with pytest.raises(StorageUnavailableError):
        await store.delete_object("k1")
    assert "k1" in store.objects

    store.fail_delete = False
    await store.delete_object("k1")
    await store.delete_object("k1")
    assert store.objects == {}


@pytest.mark.asyncio
async def test_memory_store_put_failure_stores_nothing() -> None:
    store = InMemoryObjectStore()
    store.fail_put = True
    with pytest.raises(StorageUnavailableError):
        await store.put_object("k1", b"%PDF", content_type="application/pdf", checksum_sha256="x")
    assert store.objects == {}
