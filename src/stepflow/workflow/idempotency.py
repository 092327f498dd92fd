"""Replay protection for retried upload and review submissions."""

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Callable, Optional, TypeVar

from pydantic import BaseModel

from stepflow.core.exceptions import IdempotencyConflictError
from stepflow.core.protocols import ICacheBackend

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


def fingerprint(payload: dict[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class IdempotencyGuard:
    """Remembers the result of a keyed request for ``ttl`` seconds.

    A retry with the same key and payload gets the stored result back without
    re-executing; the same key with another payload is refused.
    """

    KEY_PREFIX = "idempotency"

    def __init__(self, cache: ICacheBackend, ttl: int) -> None:
        self._cache = cache
        self._ttl = ttl

    def _cache_key(self, scope: str, caller_id: str, key: str) -> str:
        return f"{self.KEY_PREFIX}:{scope}:{caller_id}:{key}"

    def run(
        self,
        *,
        scope: str,
        caller_id: str,
        key: Optional[str],
        payload: dict[str, Any],
        model: type[M],
        execute: Callable[[], M],
    ) -> M:
        if not key:
            return execute()

        cache_key = self._cache_key(scope, caller_id, key)
        current = fingerprint(payload)
        cached = self._cache.get(cache_key)
        if cached is not None:
            record = json.loads(cached)
            if record["fingerprint"] != current:
                raise IdempotencyConflictError(scope, key)
            logger.info("Replaying %s result for idempotency key %s", scope, key)
            return model.model_validate(record["result"])

        result = execute()
        record = {"fingerprint": current, "result": result.model_dump(mode="json")}
        self._cache.setex(cache_key, self._ttl, json.dumps(record))
        return result
