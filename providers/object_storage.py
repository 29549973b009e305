"""
Object Storage Providers

Video and thumbnail blobs live in an S3-compatible bucket. The repository only
stores the returned key and URL; everything that talks to the bucket is here.

Providers:
- S3ObjectStorage: boto3 client against any S3-compatible endpoint, with
  path-style addressing and multipart uploads for large files. boto3 is
  blocking, so every call runs in a worker thread.
- InMemoryObjectStorage: dict-backed, used by tests and memory mode.

Video URLs point at the API's own streaming proxy so range requests and
access control stay in one place; thumbnail URLs are public (CDN when
configured).
"""

import asyncio
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import BinaryIO, Dict, Iterator, Optional, Tuple
from urllib.parse import quote, urlparse

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from core.config import Settings
from core.exceptions import (
    NotFoundError,
    RangeNotSatisfiableError,
    ServiceUnavailableError,
    ValidationError,
)
from core.logging_config import get_logger

logger = get_logger("providers.object_storage")

PART_SIZE = 5 * 1024 * 1024
PART_CONCURRENCY = 4
CACHE_CONTROL = "public, max-age=31536000"
STREAM_CHUNK_SIZE = 64 * 1024
DEFAULT_VIDEO_CONTENT_TYPE = "video/mp4"


@dataclass
class StoredObject:
    url: str
    key: str


@dataclass
class ObjectStream:
    body: Iterator[bytes]
    content_length: Optional[int]
    content_type: str
    content_range: Optional[str] = None

    @property
    def partial(self) -> bool:
        return self.content_range is not None


def safe_filename(filename: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", filename or "upload").strip("._")
    return cleaned or "upload"


def build_key(folder: str, filename: str) -> str:
    return f"{folder}/{int(time.time() * 1000)}-{safe_filename(filename)}"


def stream_url(key: str) -> str:
    return f"/api/videos/stream/{quote(key, safe='')}"


def parse_byte_range(header: Optional[str], size: int) -> Optional[Tuple[int, int]]:
    """Parse a single ``bytes=`` range into inclusive offsets, or None for the whole object"""
    if not header:
        return None
    match = re.fullmatch(r"\s*bytes=(\d*)-(\d*)\s*", header)
    if not match or (not match.group(1) and not match.group(2)):
        raise ValidationError("range", header, "Malformed Range header")

    start_raw, end_raw = match.groups()
    if start_raw and end_raw and int(end_raw) < int(start_raw):
        raise ValidationError("range", header, "Malformed Range header")

    if not start_raw:
        # Suffix range: the last N bytes
        length = int(end_raw)
        start, end = max(size - length, 0), size - 1
    else:
        start = int(start_raw)
        end = int(end_raw) if end_raw else size - 1
        end = min(end, size - 1)

    if start >= size or start > end:
        raise RangeNotSatisfiableError(header, size)
    return start, end


class ObjectStorage(ABC):
    """Contract for blob storage backends"""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        ...

    @property
    def provider_name(self) -> str:
        return "none"

    @property
    def cdn_enabled(self) -> bool:
        return False

    @abstractmethod
    async def upload(
        self, data: BinaryIO, filename: str, content_type: str, folder: str
    ) -> StoredObject:
        """Store a blob under a generated key in ``folder``"""

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def read(self, key: str, byte_range: Optional[str] = None) -> ObjectStream:
        """Open a blob, optionally restricted to an HTTP ``Range`` header value"""

    def url_for(self, key: str, folder: str) -> str:
        return stream_url(key) if folder == "videos" else self.public_url(key)

    def public_url(self, key: str) -> str:
        return stream_url(key)


class S3ObjectStorage(ObjectStorage):
    """S3-compatible bucket accessed through boto3"""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._client = None
        self.transfer_config = TransferConfig(
            multipart_threshold=PART_SIZE,
            multipart_chunksize=PART_SIZE,
            max_concurrency=PART_CONCURRENCY,
        )

    @property
    def is_configured(self) -> bool:
        return self.settings.storage_configured

    @property
    def provider_name(self) -> str:
        return "s3-compatible"

    @property
    def cdn_enabled(self) -> bool:
        return bool(self.settings.cdn_url)

    @property
    def client(self):
        if not self.is_configured:
            raise ServiceUnavailableError(
                "object_storage", "Video storage not configured"
            )
        if self._client is None:
            self._client = boto3.client(
                "s3",
                endpoint_url=self.settings.s3_endpoint,
                aws_access_key_id=self.settings.s3_access_key,
                aws_secret_access_key=self.settings.s3_secret_key,
                region_name=self.settings.s3_region,
                config=Config(
                    s3={"addressing_style": "path"},
                    connect_timeout=300,
                    read_timeout=300,
                    retries={"max_attempts": 3},
                ),
            )
        return self._client

    def public_url(self, key: str) -> str:
        if self.settings.cdn_url:
            return f"{self.settings.cdn_url.rstrip('/')}/{key}"
        host = urlparse(self.settings.s3_endpoint).netloc or self.settings.s3_endpoint
        return f"https://{self.settings.s3_bucket}.{host}/{key}"

    async def upload(
        self, data: BinaryIO, filename: str, content_type: str, folder: str
    ) -> StoredObject:
        key = build_key(folder, filename)
        client = self.client
        try:
            await asyncio.to_thread(
                client.upload_fileobj,
                data,
                self.settings.s3_bucket,
                key,
                ExtraArgs={"ContentType": content_type, "CacheControl": CACHE_CONTROL},
                Config=self.transfer_config,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Upload failed: {e}", extra={"key": key})
            raise ServiceUnavailableError("object_storage", "upload failed") from e

        logger.info("Object uploaded", extra={"key": key, "bucket": self.settings.s3_bucket})
        return StoredObject(url=self.url_for(key, folder), key=key)

    async def delete(self, key: str) -> None:
        client = self.client
        try:
            await asyncio.to_thread(
                client.delete_object, Bucket=self.settings.s3_bucket, Key=key
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Delete failed: {e}", extra={"key": key})
            raise ServiceUnavailableError("object_storage", "delete failed") from e
        logger.info("Object deleted", extra={"key": key})

    async def _size_of(self, key: str) -> Optional[int]:
        try:
            head = await asyncio.to_thread(
                self.client.head_object, Bucket=self.settings.s3_bucket, Key=key
            )
        except (ClientError, BotoCoreError) as e:
            logger.warning(f"Could not size {key}: {e}")
            return None
        return head.get("ContentLength")

    async def read(self, key: str, byte_range: Optional[str] = None) -> ObjectStream:
        client = self.client
        params = {"Bucket": self.settings.s3_bucket, "Key": key}
        if byte_range:
            params["Range"] = byte_range
        try:
            response = await asyncio.to_thread(client.get_object, **params)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code")
            if code in ("NoSuchKey", "404", "NotFound"):
                raise NotFoundError("Video", key) from e
            if code == "InvalidRange":
                raise RangeNotSatisfiableError(byte_range, await self._size_of(key)) from e
            logger.error(f"Read failed: {e}", extra={"key": key})
            raise ServiceUnavailableError("object_storage", "read failed") from e
        except BotoCoreError as e:
            logger.error(f"Read failed: {e}", extra={"key": key})
            raise ServiceUnavailableError("object_storage", "read failed") from e

        return ObjectStream(
            body=response["Body"].iter_chunks(chunk_size=STREAM_CHUNK_SIZE),
            content_length=response.get("ContentLength"),
            content_type=response.get("ContentType") or DEFAULT_VIDEO_CONTENT_TYPE,
            content_range=response.get("ContentRange"),
        )


class InMemoryObjectStorage(ObjectStorage):
    """Blob storage kept in a dict"""

    def __init__(self):
        self.objects: Dict[str, Tuple[bytes, str]] = {}

    @property
    def is_configured(self) -> bool:
        return True

    @property
    def provider_name(self) -> str:
        return "memory"

    async def upload(
        self, data: BinaryIO, filename: str, content_type: str, folder: str
    ) -> StoredObject:
        key = build_key(folder, filename)
        while key in self.objects:
            key = build_key(folder, f"x{filename}")
        self.objects[key] = (data.read(), content_type)
        return StoredObject(url=self.url_for(key, folder), key=key)

    async def delete(self, key: str) -> None:
        self.objects.pop(key, None)

    async def read(self, key: str, byte_range: Optional[str] = None) -> ObjectStream:
        if key not in self.objects:
            raise NotFoundError("Video", key)
        payload, content_type = self.objects[key]
        size = len(payload)

        span = parse_byte_range(byte_range, size)
        if span is None:
            return ObjectStream(
                body=iter([payload]), content_length=size, content_type=content_type
            )

        start, end = span
        return ObjectStream(
            body=iter([payload[start : end + 1]]),
            content_length=end - start + 1,
            content_type=content_type,
            content_range=f"bytes {start}-{end}/{size}",
        )
