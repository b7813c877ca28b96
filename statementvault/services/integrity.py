from __future__ import annotations

import base64
from dataclasses import dataclass
import hashlib

from statementvault.core.config import get_settings
from statementvault.core.errors import ValidationFailedError


PDF_MAGIC = b"%PDF"


@dataclass(frozen=True)
class VerifiedUpload:
    content_type: str
    size_bytes: int
    checksum_sha256: str


def normalize_content_type(declared: str | None) -> str:
    # Drop parameters such as "; charset=binary" and compare case-insensitively.
    if not declared:
        return ""
    return declared.split(";", 1)[0].strip().lower()


def sha256_b64(data: bytes) -> str:
    return base64.b64encode(hashlib.sha256(data).digest()).decode("ascii")


def verify_upload(
    data: bytes,
    declared_content_type: str | None,
    declared_size: int | None = None,
) -> VerifiedUpload:
    """Validate raw upload bytes and compute their digest.

    The declared content type is only a gate; the magic number decides whether
    the payload is a PDF. Pure function: no I/O, no logging.
    """
    settings = get_settings()
    if not data:
        raise ValidationFailedError("file is empty")
    size = len(data)
    # Callers may hand over a truncated read, so the declared size counts toward the ceiling too.
    if max(size, declared_size or 0) > settings.upload_max_bytes:
        raise ValidationFailedError(
            "file exceeds maximum size",
            details={"max_bytes": settings.upload_max_bytes},
        )
    if declared_size is not None and declared_size != size:
        raise ValidationFailedError(
            "declared size does not match received bytes",
            details={"declared_size": declared_size, "received_size": size},
        )
    content_type = normalize_content_type(declared_content_type)
    if content_type not in settings.allowed_content_types():
        raise ValidationFailedError(
            "content type not allowed",
            details={"allowed": sorted(settings.allowed_content_types())},
        )
    if data[:4] != PDF_MAGIC:
        raise ValidationFailedError("file content is not a PDF document")
    return VerifiedUpload(content_type=content_type, size_bytes=size, checksum_sha256=sha256_b64(data))
