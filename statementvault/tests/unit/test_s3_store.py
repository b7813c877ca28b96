from __future__ import annotations

from urllib.parse import parse_qs, urlparse

import boto3
from botocore.stub import Stubber
import pytest

from statementvault.core.errors import StorageUnavailableError
from statementvault.providers.storage.s3 import S3ObjectStore, content_disposition
from statementvault.services.integrity import sha256_b64
from statementvault.services.telemetry import counters_snapshot
from statementvault.tests.utils.factories import make_pdf


def _client():
    # Static credentials keep signing offline and deterministic.
    return boto3.client(
        "s3",
        region_name="af-south-1",
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
    )


@pytest.mark.asyncio
async def test_put_object_requests_server_side_encryption() -> None:
    client = _client()
    store = S3ObjectStore("statements", "af-south-1", client=client)
    data = make_pdf(64)
    checksum = sha256_b64(data)
    with Stubber(client) as stubber:
        stubber.add_response(
            "put_object",
            {"ETag": '"etag"'},
            {
                "Bucket": "statements",
                "Key": "statements/c1/2024-01/k_a.pdf",
                "Body": data,
                "ContentType": "application/pdf",
                "ContentLength": 64,
                "ChecksumSHA256": checksum,
                "ServerSideEncryption": "AES256",
            },
        )
        await store.put_object(
            "statements/c1/2024-01/k_a.pdf",
            data,
            content_type="application/pdf",
            checksum_sha256=checksum,
        )
        stubber.assert_no_pending_responses()


@pytest.mark.asyncio
async def test_delete_object_calls_s3() -> None:
    client = _client()
    store = S3ObjectStore("statements", "af-south-1", client=client)
    with Stubber(client) as stubber:
        stubber.add_response("delete_object", {}, {"Bucket": "statements", "Key": "k1"})
        await store.delete_object("k1")
        stubber.assert_no_pending_responses()


@pytest.mark.asyncio
async def test_server_errors_are_retried_then_reported_unavailable() -> None:
    client = _client()
    store = S3ObjectStore("statements", "af-south-1", client=client)
    with Stubber(client) as stubber:
        stubber.add_client_error("delete_object", service_error_code="InternalError", http_status_code=500)
        stubber.add_client_error("delete_object", service_error_code="InternalError", http_status_code=500)
        with pytest.raises(StorageUnavailableError):
            await store.delete_object("k1")
        stubber.assert_no_pending_responses()
    assert counters_snapshot().get("storage_retries_total.delete") == 1


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    client = _client()
    store = S3ObjectStore("statements", "af-south-1", client=client)
    with Stubber(client) as stubber:
        stubber.add_client_error("delete_object", service_error_code="AccessDenied", http_status_code=403)
        with pytest.raises(StorageUnavailableError):
            await store.delete_object("k1")
        stubber.assert_no_pending_responses()
    assert "storage_retries_total.delete" not in counters_snapshot()


@pytest.mark.asyncio
async def test_presign_forces_attachment_and_content_type() -> None:
    store = S3ObjectStore("statements", "af-south-1", client=_client())
    url = await store.presign_get(
        "statements/c1/2024-01/k_jan.pdf",
        file_name="jan.pdf",
        content_type="application/pdf",
        ttl_s=300,
    )
    parsed = urlparse(url)
    query = parse_qs(parsed.query)
    assert parsed.path.endswith("/statements/c1/2024-01/k_jan.pdf")
    assert query["response-content-disposition"] == ['attachment; filename="jan.pdf"']
    assert query["response-content-type"] == ["application/pdf"]
    assert query["X-Amz-Expires"] == ["300"]


def test_content_disposition_strips_quotes() -> None:
    assert content_disposition('a"b\\c.pdf') == 'attachment; filename="a_b_c.pdf"'


def test_store_requires_bucket() -> None:
    with pytest.raises(StorageUnavailableError):
        S3ObjectStore("", "af-south-1")
