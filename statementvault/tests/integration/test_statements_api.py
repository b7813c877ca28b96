from __future__ import annotations

import base64
import hashlib

import pytest
from httpx import ASGITransport, AsyncClient

from statementvault.apps.api.main import create_app
from statementvault.providers.storage.factory import get_object_store
from statementvault.tests.utils.factories import create_test_customer, make_pdf, token_from_path


def _client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=create_app()), base_url="http://test")


async def _upload(client: AsyncClient, customer_id: str, period: str, data: bytes, content_type: str = "application/pdf"):
    return await client.post(
        "/api/statements/upload",
        headers={"X-Customer-Id": customer_id},
        files={"file": ("jan.pdf", data, content_type)},
        data={"statement_period": period},
    )


@pytest.mark.asyncio
async def test_upload_link_and_single_use_download_over_http() -> None:
    customer_id = await create_test_customer()
    data = make_pdf(500)
    async with _client() as client:
        created = await _upload(client, customer_id, "2024-01", data)
        assert created.status_code == 201
        body = created.json()
        assert body["period"] == "2024-01"
        assert body["size_bytes"] == 500
        assert body["checksum_sha256"] == base64.b64encode(hashlib.sha256(data).digest()).decode()
        assert created.headers["X-Request-Id"]

        listed = await client.get("/api/statements", headers={"X-Customer-Id": customer_id})
        assert listed.status_code == 200
        assert [item["id"] for item in listed.json()] == [body["id"]]

        link = await client.post(
            "/api/statements/generate-link",
            headers={"X-Customer-Id": customer_id},
            json={"statement_id": body["id"]},
        )
        assert link.status_code == 200
        link_body = link.json()
        assert link_body["valid_for_minutes"] == 15
        assert link_body["download_path"].startswith("/api/statements/download/")

        first = await client.get(link_body["download_path"], headers={"X-Forwarded-For": "203.0.113.9"})
        assert first.status_code == 302
        assert first.headers["location"].startswith("memory://")
        assert first.headers["cache-control"] == "no-store"

        second = await client.get(link_body["download_path"])
        assert second.status_code == 404
        assert second.json()["error"]["code"] == "INVALID_OR_EXPIRED"

        trail = await client.get("/api/audit", headers={"X-Customer-Id": customer_id})
        assert trail.status_code == 200
        actions = [item["action"] for item in trail.json()["items"]]
        assert actions == ["DOWNLOAD", "GENERATE_LINK", "UPLOAD"]
        assert trail.json()["items"][0]["ip_address"] == "203.0.113.9"


@pytest.mark.asyncio
async def test_error_envelopes_for_domain_failures() -> None:
    customer_id = await create_test_customer()
    async with _client() as client:
        forged = await _upload(client, customer_id, "2024-01", b"GIF89a fake")
        assert forged.status_code == 422
        assert forged.json()["error"]["code"] == "VALIDATION_FAILED"
        assert "request_id" in forged.json()["meta"]

        ok = await _upload(client, customer_id, "2024-01", make_pdf())
        assert ok.status_code == 201
        duplicate = await _upload(client, customer_id, "2024-01", make_pdf())
        assert duplicate.status_code == 409
        assert duplicate.json()["error"]["code"] == "DUPLICATE_PERIOD"

        statement_id = ok.json()["id"]
        for _ in range(5):
            issued = await client.post(
                "/api/statements/generate-link",
                headers={"X-Customer-Id": customer_id},
                json={"statement_id": statement_id},
            )
            assert issued.status_code == 200
        limited = await client.post(
            "/api/statements/generate-link",
            headers={"X-Customer-Id": customer_id},
            json={"statement_id": statement_id},
        )
        assert limited.status_code == 429
        assert limited.json()["error"]["details"] == {"max_active": 5}

        missing = await client.post(
            "/api/statements/generate-link",
            headers={"X-Customer-Id": customer_id},
            json={"statement_id": "nope"},
        )
        assert missing.status_code == 404
        assert missing.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_identity_header_and_customer_state_are_enforced() -> None:
    inactive = await create_test_customer(active=False)
    async with _client() as client:
        anonymous = await client.get("/api/statements")
        assert anonymous.status_code == 401
        assert anonymous.json()["error"]["code"] == "AUTH_UNAUTHORIZED"

        blocked = await _upload(client, inactive, "2024-01", make_pdf())
        assert blocked.status_code == 403
        assert blocked.json()["error"]["code"] == "CUSTOMER_INACTIVE"

        unknown = await _upload(client, "ghost", "2024-01", make_pdf())
        assert unknown.status_code == 404


@pytest.mark.asyncio
async def test_delete_then_download_and_get_are_not_found() -> None:
    customer_id = await create_test_customer()
    async with _client() as client:
        created = await _upload(client, customer_id, "2024-03", make_pdf())
        statement_id = created.json()["id"]
        link = await client.post(
            "/api/statements/generate-link",
            headers={"X-Customer-Id": customer_id},
            json={"statement_id": statement_id},
        )
        download_path = link.json()["download_path"]

        deleted = await client.delete(f"/api/statements/{statement_id}", headers={"X-Customer-Id": customer_id})
        assert deleted.status_code == 204
        assert get_object_store().objects == {}

        fetched = await client.get(f"/api/statements/{statement_id}", headers={"X-Customer-Id": customer_id})
        assert fetched.status_code == 404
        redeemed = await client.get(download_path)
        assert redeemed.status_code == 404
        assert redeemed.json()["error"]["code"] == "NOT_FOUND"
        assert token_from_path(download_path)


@pytest.mark.asyncio
async def test_storage_outage_maps_to_503() -> None:
    customer_id = await create_test_customer()
    get_object_store().fail_put = True
    async with _client() as client:
        response = await _upload(client, customer_id, "2024-01", make_pdf())
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "STORAGE_UNAVAILABLE"
    assert response.headers["retry-after"] == "30"


@pytest.mark.asyncio
async def test_health_and_ops_metrics() -> None:
    async with _client() as client:
        health = await client.get("/health")
        assert health.status_code == 200
        assert health.json() == {"status": "ok"}
        metrics = await client.get("/ops/metrics")
        assert metrics.status_code == 200
        assert metrics.json()["storage_provider"] == "memory"
