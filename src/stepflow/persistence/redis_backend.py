"""Redis cache backend implementing ICacheBackend."""

from __future__ import annotations

import redis

from stepflow.core.exceptions import CacheError


class RedisCacheBackend:
    """Production ICacheBackend backed by Redis; holds idempotency records.

    Every key is stored under ``key_prefix`` so several deployments can share
    one Redis database. Records always expire.
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        key_prefix: str = "stepflow:",
        socket_timeout: float | None = 5.0,
    ) -> None:
        self._key_prefix = key_prefix
        self._client = redis.Redis(
            host=host, port=port, db=db, decode_responses=True,
            socket_timeout=socket_timeout,
        )

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    def get(self, key: str) -> str | None:
        try:
            return self._client.get(self._key(key))
        except redis.RedisError as exc:
            raise CacheError(f"Redis GET failed for key={key!r}: {exc}") from exc

    def setex(self, key: str, ttl: int, value: str) -> None:
        if ttl <= 0:
            raise CacheError(f"Redis SETEX needs a positive TTL for key={key!r}, got {ttl}")
        try:
            self._client.setex(self._key(key), ttl, value)
        except redis.RedisError as exc:
            raise CacheError(f"Redis SETEX failed for key={key!r}: {exc}") from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as exc:
            raise CacheError(f"Redis DELETE failed for key={key!r}: {exc}") from exc
