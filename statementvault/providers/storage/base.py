from __future__ import annotations

from typing import Protocol


class ObjectStore(Protocol):
    async def put_object(self, key: str, data: bytes, *, content_type: str, checksum_sha256: str) -> None:
        ...

    async def delete_object(self, key: str) -> None:
        ...

    async def presign_get(self, key: str, *, file_name: str, content_type: str, ttl_s: int) -> str:
        ...
