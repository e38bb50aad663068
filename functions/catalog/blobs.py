"""
Blob store abstraction for S3-compatible object storage and in-memory testing.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from catalog.errors import NotFoundError, TransportError, ValidationError

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "supabase-bucket"
DEFAULT_FOLDER = "public"

_MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class BlobStore(Protocol):
    """Defines the operations the upload flow needs from object storage."""

    def upload(
        self, content: bytes, filename: str, content_type: Optional[str] = None
    ) -> str:
        ...

    def resolve_public_url(self, path: str) -> str:
        ...

    def download(self, path: str) -> bytes:
        ...


def object_key(folder: str, filename: str) -> str:
    """Destination key for an uploaded file; the same name always maps to the same key."""
    name = (filename or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    if not name or name in (".", ".."):
        raise ValidationError("file name is required")
    folder = folder.strip("/")
    return f"{folder}/{name}" if folder else name


def public_url(base_url: str, bucket: str, path: str) -> str:
    return f"{base_url.rstrip('/')}/{bucket}/{quote(path)}"


@dataclass
class InMemoryBlobStore:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage/v1/object/public"
    bucket: str = DEFAULT_BUCKET
    folder: str = DEFAULT_FOLDER
    stored_objects: dict = field(default_factory=dict)

    def upload(
        self, content: bytes, filename: str, content_type: Optional[str] = None
    ) -> str:
        path = object_key(self.folder, filename)
        # Last write wins on path collisions.
        self.stored_objects[path] = bytes(content)
        logger.info("Uploaded %d bytes to %s/%s", len(content), self.bucket, path)
        return path

    def resolve_public_url(self, path: str) -> str:
        return public_url(self.base_url, self.bucket, path)

    def download(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise NotFoundError(path)
        return stored


@dataclass
class S3BlobStore:
    """
    Client for the platform's S3-compatible storage endpoint.

    Public URLs are derived from `public_base_url` and assume the bucket is
    publicly readable; no existence check is made.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str
    public_base_url: str
    folder: str = DEFAULT_FOLDER

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "path"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint,
            region_name=self.region,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def upload(
        self, content: bytes, filename: str, content_type: Optional[str] = None
    ) -> str:
        path = object_key(self.folder, filename)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=path,
                Body=content,
                ContentType=content_type or "application/octet-stream",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.exception("Failed to upload %s to %s", path, self.bucket)
            raise TransportError(f"upload of {path} failed") from exc
        logger.info("Uploaded %d bytes to %s/%s", len(content), self.bucket, path)
        return path

    def resolve_public_url(self, path: str) -> str:
        return public_url(self.public_base_url, self.bucket, path)

    def download(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
            return response["Body"].read()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in _MISSING_KEY_CODES:
                raise NotFoundError(path) from exc
            logger.exception("Failed to download %s from %s", path, self.bucket)
            raise TransportError(f"download of {path} failed") from exc
        except BotoCoreError as exc:
            logger.exception("Failed to download %s from %s", path, self.bucket)
            raise TransportError(f"download of {path} failed") from exc
