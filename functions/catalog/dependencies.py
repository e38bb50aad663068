"""
Dependency wiring for the FastAPI app.

The backend clients are built once per application by `build_backend` and
owned by `app.state.backend`; request handlers receive them through the
FastAPI dependencies below.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from catalog.blobs import BlobStore, InMemoryBlobStore, S3BlobStore
from catalog.changefeed import ChangeFeed, InMemoryChangeFeed, RedisChangeFeed
from catalog.config import Settings, get_settings
from catalog.controllers import BooksController, UploadController
from catalog.functions import FunctionClient, HttpFunctionClient, InMemoryFunctionClient
from catalog.records import InMemoryRecordStore, RecordStore, SqlRecordStore

logger = logging.getLogger(__name__)


@dataclass
class Backend:
    settings: Settings
    records: RecordStore
    blobs: BlobStore
    feed: ChangeFeed
    functions: FunctionClient

    def books_controller(self) -> BooksController:
        return BooksController(
            self.records,
            self.feed,
            error_ttl=self.settings.error_message_ttl_seconds,
        )

    def upload_controller(self) -> UploadController:
        return UploadController(
            self.blobs,
            error_ttl=self.settings.error_message_ttl_seconds,
            copied_ttl=self.settings.copied_flag_ttl_seconds,
        )


def build_change_feed(settings: Settings) -> ChangeFeed:
    if settings.use_in_memory_backends or not settings.redis_url:
        return InMemoryChangeFeed(record_history=settings.use_in_memory_backends)
    return RedisChangeFeed(
        url=settings.redis_url, topic_prefix=settings.change_topic_prefix
    )


def build_record_store(settings: Settings, feed: ChangeFeed) -> RecordStore:
    if settings.use_in_memory_backends or not settings.database_url:
        return InMemoryRecordStore(feed=feed)
    return SqlRecordStore(settings.database_url, feed=feed)


def build_blob_store(settings: Settings) -> BlobStore:
    if settings.use_in_memory_backends or not settings.storage_endpoint:
        return InMemoryBlobStore(
            bucket=settings.storage_bucket, folder=settings.storage_folder
        )
    if not settings.storage_public_url:
        raise ValueError("STORAGE_PUBLIC_URL is required when STORAGE_ENDPOINT is set")
    return S3BlobStore(
        bucket=settings.storage_bucket,
        region=settings.storage_region or "",
        endpoint=settings.storage_endpoint,
        access_key_id=settings.aws_access_key_id or "",
        secret_access_key=settings.aws_secret_access_key or "",
        public_base_url=settings.storage_public_url,
        folder=settings.storage_folder,
    )


def build_function_client(settings: Settings) -> FunctionClient:
    if settings.use_in_memory_backends or not settings.functions_url:
        return InMemoryFunctionClient(record_history=settings.use_in_memory_backends)
    return HttpFunctionClient(
        base_url=settings.functions_url,
        api_key=settings.api_key,
        timeout=settings.function_timeout_seconds,
    )


def build_backend(settings: Optional[Settings] = None) -> Backend:
    settings = settings or get_settings()
    feed = build_change_feed(settings)
    backend = Backend(
        settings=settings,
        records=build_record_store(settings, feed),
        blobs=build_blob_store(settings),
        feed=feed,
        functions=build_function_client(settings),
    )
    logger.info(
        "Backend ready: records=%s blobs=%s feed=%s functions=%s",
        type(backend.records).__name__,
        type(backend.blobs).__name__,
        type(backend.feed).__name__,
        type(backend.functions).__name__,
    )
    return backend


def get_backend(request: Request) -> Backend:
    return request.app.state.backend


def get_record_store(request: Request) -> RecordStore:
    return get_backend(request).records


def get_blob_store(request: Request) -> BlobStore:
    return get_backend(request).blobs


def get_function_client(request: Request) -> FunctionClient:
    return get_backend(request).functions
