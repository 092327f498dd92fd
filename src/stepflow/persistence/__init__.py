"""Pluggable persistence backends behind Protocol interfaces."""

from __future__ import annotations

from stepflow.core.config import AppSettings
from stepflow.core.protocols import ICacheBackend, IEntityStore, IFileStore
from stepflow.persistence.dynamodb_backend import DynamoDBEntityStore
from stepflow.persistence.memory_backend import (
    MemoryCacheBackend,
    MemoryEntityStore,
    MemoryFileStore,
)
from stepflow.persistence.redis_backend import RedisCacheBackend
from stepflow.persistence.s3_backend import S3FileStore


def create_persistence(
    settings: AppSettings | None = None,
) -> tuple[IEntityStore, ICacheBackend, IFileStore]:
    """Create wired-up persistence backends from application settings.

    ``backend="memory"`` gives process-local dict stores; ``"aws"`` gives
    DynamoDB, Redis and S3.

    Returns:
        Tuple of (entity_store, cache, file_store).
    """
    if settings is None:
        settings = AppSettings()

    if settings.backend == "memory":
        return MemoryEntityStore(), MemoryCacheBackend(), MemoryFileStore()

    cache = RedisCacheBackend(
        host=settings.redis.host,
        port=settings.redis.port,
        db=settings.redis.db,
        key_prefix=settings.redis.key_prefix,
        socket_timeout=settings.redis.socket_timeout,
    )

    entity_store = DynamoDBEntityStore(
        table_suffix=settings.dynamodb.table_suffix,
        region=settings.dynamodb.region,
        endpoint_url=settings.dynamodb.endpoint_url,
    )

    file_store = S3FileStore(
        bucket=settings.s3.bucket,
        region=settings.s3.region,
        endpoint_url=settings.s3.endpoint_url,
    )

    return entity_store, cache, file_store
