from __future__ import annotations

from functools import lru_cache

from statementvault.core.config import get_settings
from statementvault.core.errors import StorageUnavailableError
from statementvault.providers.storage.base import ObjectStore
from statementvault.providers.storage.memory import InMemoryObjectStore
from statementvault.providers.storage.s3 import S3ObjectStore


@lru_cache
def get_object_store() -> ObjectStore:
    # One store per process so breaker state and in-memory objects are shared.
    settings = get_settings()
    provider = (settings.storage_provider or "s3").lower()

    if provider == "memory":
        return InMemoryObjectStore(settings.s3_bucket_name)
    if provider == "s3":
        return S3ObjectStore(
            settings.s3_bucket_name,
            settings.s3_region,
            endpoint_url=settings.s3_endpoint_url,
            server_side_encryption=settings.s3_server_side_encryption or None,
        )

    raise StorageUnavailableError(f"Unsupported storage provider: {provider}")
