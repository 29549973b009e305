"""
Upload Service.

Validates incoming media files and hands them to the configured object
storage.

Key Components:
- `ALLOWED_VIDEO_TYPES` / `ALLOWED_IMAGE_TYPES`: The content types accepted
  for videos and thumbnails.
- `validate_upload`: Enforces the content type and the size cap before any
  byte reaches the bucket.
- `store_upload`: Validation plus the storage call, returning the URL and key
  the client later sends with ``POST /api/videos``.
"""

import os
from typing import BinaryIO, Dict, FrozenSet, Optional

from core.exceptions import (
    PayloadTooLargeError,
    ServiceUnavailableError,
    UnsupportedMediaTypeError,
    ValidationError,
)
from core.logging_config import get_logger
from providers.object_storage import ObjectStorage

logger = get_logger("services.upload")

ALLOWED_VIDEO_TYPES: FrozenSet[str] = frozenset(
    {"video/mp4", "video/webm", "video/ogg", "video/quicktime"}
)
ALLOWED_IMAGE_TYPES: FrozenSet[str] = frozenset(
    {"image/jpeg", "image/jpg", "image/png", "image/webp"}
)

UPLOAD_KINDS: Dict[str, FrozenSet[str]] = {
    "videos": ALLOWED_VIDEO_TYPES,
    "thumbnails": ALLOWED_IMAGE_TYPES,
}


def measure(data: BinaryIO) -> int:
    """Size of a seekable file object, leaving it rewound"""
    data.seek(0, os.SEEK_END)
    size = data.tell()
    data.seek(0)
    return size


def validate_upload(
    content_type: Optional[str], size: int, folder: str, max_bytes: int
) -> None:
    allowed = UPLOAD_KINDS.get(folder)
    if allowed is None:
        raise ValidationError("folder", folder, f"Unknown upload folder: {folder}")
    if size > max_bytes:
        raise PayloadTooLargeError(size, max_bytes)
    if size == 0:
        raise ValidationError("file", None, "No file provided")
    if (content_type or "").lower() not in allowed:
        raise UnsupportedMediaTypeError(content_type, allowed)


async def store_upload(
    storage: ObjectStorage,
    data: BinaryIO,
    filename: Optional[str],
    content_type: Optional[str],
    folder: str,
    max_bytes: int,
) -> Dict[str, str]:
    if not storage.is_configured:
        raise ServiceUnavailableError("object_storage", "Video storage not configured")

    size = measure(data)
    validate_upload(content_type, size, folder, max_bytes)

    stored = await storage.upload(data, filename or "upload", content_type.lower(), folder)
    logger.info(
        "Upload stored",
        extra={"folder": folder, "key": stored.key, "size": size},
    )
    return {"url": stored.url, "key": stored.key}
