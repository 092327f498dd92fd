"""Tests for the idempotency guard."""

from __future__ import annotations

import json

import pytest

from stepflow.core.exceptions import IdempotencyConflictError, ValidationError
from stepflow.models.entities import User
from stepflow.workflow.idempotency import IdempotencyGuard, fingerprint
from tests.fakes import MemoryCacheBackend


class Counter:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self) -> User:
        self.calls += 1
        return User(id=f"user-{self.calls}")


@pytest.fixture
def guard_and_cache():
    cache = MemoryCacheBackend()
    return IdempotencyGuard(cache, ttl=60), cache


class TestFingerprint:
    def test_key_order_does_not_matter(self):
        assert fingerprint({"a": 1, "b": 2}) == fingerprint({"b": 2, "a": 1})

    def test_payload_changes_fingerprint(self):
        assert fingerprint({"a": 1}) != fingerprint({"a": 2})


class TestRun:
    def test_without_key_always_executes(self, guard_and_cache):
        guard, _ = guard_and_cache
        execute = Counter()
        for _ in range(2):
            guard.run(scope="s", caller_id="c", key=None, payload={}, model=User, execute=execute)
        assert execute.calls == 2

    def test_replay_returns_stored_result(self, guard_and_cache):
        guard, _ = guard_and_cache
        execute = Counter()
        first = guard.run(scope="s", caller_id="c", key="k", payload={"x": 1}, model=User, execute=execute)
        second = guard.run(scope="s", caller_id="c", key="k", payload={"x": 1}, model=User, execute=execute)
        assert execute.calls == 1
        assert second == first

    def test_conflicting_payload_refused(self, guard_and_cache):
        guard, _ = guard_and_cache
        execute = Counter()
        guard.run(scope="s", caller_id="c", key="k", payload={"x": 1}, model=User, execute=execute)
        with pytest.raises(IdempotencyConflictError) as exc_info:
            guard.run(scope="s", caller_id="c", key="k", payload={"x": 2}, model=User, execute=execute)
        assert isinstance(exc_info.value, ValidationError)
        assert execute.calls == 1

    def test_keys_are_scoped_per_caller(self, guard_and_cache):
        guard, cache = guard_and_cache
        execute = Counter()
        guard.run(scope="s", caller_id="a", key="k", payload={}, model=User, execute=execute)
        guard.run(scope="s", caller_id="b", key="k", payload={}, model=User, execute=execute)
        assert execute.calls == 2
        record = json.loads(cache.get("idempotency:s:a:k"))
        assert record["result"]["id"] == "user-1"

    def test_failed_execution_is_not_recorded(self, guard_and_cache):
        guard, cache = guard_and_cache

        def boom() -> User:
            raise ValidationError("bad")

        with pytest.raises(ValidationError):
            guard.run(scope="s", caller_id="c", key="k", payload={}, model=User, execute=boom)
        assert cache.get("idempotency:s:c:k") is None
