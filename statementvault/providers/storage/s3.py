from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from statementvault.core.config import get_settings
from statementvault.core.errors import StorageUnavailableError
from statementvault.services.resilience import (
    StorageCircuitBreaker,
    call_with_retries,
    get_resilience_redis,
    storage_policy,
)
from statementvault.services.telemetry import record_external_call


logger = logging.getLogger(__name__)

_INTEGRATION = "storage.s3"


def _retryable(exc: Exception) -> bool:
    # Retry timeouts and 5xx only; 4xx responses will not improve on retry.
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, ClientError):
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        return isinstance(status, int) and status >= 500
    return isinstance(exc, BotoCoreError)


def content_disposition(file_name: str) -> str:
    # Quotes and backslashes would break the header value.
    safe = file_name.replace("\\", "_").replace('"', "_")
    return f'attachment; filename="{safe}"'


class S3ObjectStore:
    def __init__(
        self,
        bucket: str,
        region: str,
        *,
        client: Any | None = None,
        endpoint_url: str | None = None,
        server_side_encryption: str | None = "AES256",
        clock: Callable[[], float] | None = None,
    ) -> None:
        if not bucket:
            raise StorageUnavailableError("s3 bucket name is required")
        self._bucket = bucket
        self._region = region
        self._client = client
        self._endpoint_url = endpoint_url
        self._sse = server_side_encryption
        self._clock = clock
        self._breakers: dict[str, StorageCircuitBreaker] = {}

    @property
    def bucket(self) -> str:
        return self._bucket

    async def _get_breaker(self, operation: str) -> StorageCircuitBreaker:
        # One breaker per operation; a failing put does not block deletes.
        breaker = self._breakers.get(operation)
        if breaker is None:
            redis = await get_resilience_redis()
            breaker = StorageCircuitBreaker(f"{_INTEGRATION}.{operation}", redis=redis, clock=self._clock)
            self._breakers[operation] = breaker
        return breaker

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client
        import boto3

        settings = get_settings()
        timeout_s = max(settings.storage_timeout_ms / 1000.0, 1.0)
        # Retries are owned by call_with_retries; botocore gets a single attempt per call.
        s3_options = {"addressing_style": "path"} if self._endpoint_url else {}
        config = Config(
            signature_version="s3v4",
            connect_timeout=timeout_s,
            read_timeout=timeout_s,
            retries={"max_attempts": 1, "mode": "standard"},
            s3=s3_options,
        )
        self._client = boto3.client(
            "s3",
            region_name=self._region,
            endpoint_url=self._endpoint_url,
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            config=config,
        )
        return self._client

    async def _guarded(self, operation: str, call: Callable[[], Awaitable[Any]]) -> Any:
        breaker = await self._get_breaker(operation)
        await breaker.admit()
        start = time.monotonic()
        try:
            result = await call_with_retries(call, policy=storage_policy(operation), retryable=_retryable)
        except Exception as exc:
            await breaker.failed()
            record_external_call(
                integration=_INTEGRATION,
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            logger.warning("object_store_call_failed op=%s error=%s", operation, exc.__class__.__name__)
            raise StorageUnavailableError(f"object store {operation} failed") from exc
        await breaker.succeeded()
        record_external_call(
            integration=_INTEGRATION,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        return result

    async def put_object(self, key: str, data: bytes, *, content_type: str, checksum_sha256: str) -> None:
        client = self._get_client()
        request: dict[str, Any] = {
            "Bucket": self._bucket,
            "Key": key,
            "Body": data,
            "ContentType": content_type,
            "ContentLength": len(data),
            "ChecksumSHA256": checksum_sha256,
        }
        if self._sse:
            request["ServerSideEncryption"] = self._sse

        async def _call() -> dict:
            return await asyncio.to_thread(client.put_object, **request)

        await self._guarded("put", _call)

    async def delete_object(self, key: str) -> None:
        client = self._get_client()

        async def _call() -> dict:
            return await asyncio.to_thread(client.delete_object, Bucket=self._bucket, Key=key)

        await self._guarded("delete", _call)

    async def presign_get(self, key: str, *, file_name: str, content_type: str, ttl_s: int) -> str:
        # Signing is local; only credential resolution can fail here.
        client = self._get_client()
        params = {
            "Bucket": self._bucket,
            "Key": key,
            "ResponseContentDisposition": content_disposition(file_name),
            "ResponseContentType": content_type,
        }
        try:
            return await asyncio.to_thread(
                client.generate_presigned_url,
                "get_object",
                Params=params,
                ExpiresIn=int(ttl_s),
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("object_store_presign_failed error=%s", exc.__class__.__name__)
            raise StorageUnavailableError("object store presign failed") from exc
