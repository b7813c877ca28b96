from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import quote, urlencode

from statementvault.core.errors import StorageUnavailableError


@dataclass
class StoredObject:
    data: bytes
    content_type: str
    checksum_sha256: str


class InMemoryObjectStore:
    def __init__(self, bucket: str = "statements") -> None:
        # Process-local store for dev and tests; the fail_* switches simulate outages.
        self.bucket = bucket
        self.objects: dict[str, StoredObject] = {}
        self.fail_put = False
        self.fail_delete = False
        self.fail_presign = False

    async def put_object(self, key: str, data: bytes, *, content_type: str, checksum_sha256: str) -> None:
        if self.fail_put:
            raise StorageUnavailableError("object store put failed")
        self.objects[key] = StoredObject(bytes(data), content_type, checksum_sha256)

    async def delete_object(self, key: str) -> None:
        if self.fail_delete:
            raise StorageUnavailableError("object store delete failed")
        # Deleting a missing key is not an error, matching S3 semantics.
        self.objects.pop(key, None)

    async def presign_get(self, key: str, *, file_name: str, content_type: str, ttl_s: int) -> str:
        if self.fail_presign:
            raise StorageUnavailableError("object store presign failed")
        query = urlencode(
            {
                "expires_in": int(ttl_s),
                "response-content-disposition": f'attachment; filename="{file_name}"',
                "response-content-type": content_type,
            }
        )
        return f"memory://{self.bucket}/{quote(key)}?{query}"
