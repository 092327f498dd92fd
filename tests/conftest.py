"""Shared fixtures: in-memory backends, seeded users and callers."""

from __future__ import annotations

from typing import Callable

import pytest

from stepflow.core.config import AppSettings
from stepflow.models.entities import FileMeta, Role, StepDraft, User
from stepflow.models.views import JobWithSteps
from stepflow.workflow.authorization import Caller
from stepflow.workflow.orchestrator import WorkflowOrchestrator
from stepflow.workflow.users import UserDirectory
from tests.fakes import MemoryCacheBackend, MemoryEntityStore, MemoryFileStore

SEED_USERS = [
    User(id="manager-1", email="m1@example.com", role=Role.MANAGER),
    User(id="manager-2", email="m2@example.com", role=Role.MANAGER),
    User(id="viewer-1", email="v1@example.com", role=Role.MANAGER_VIEW_ONLY),
    User(id="worker-1", email="w1@example.com", role=Role.WORKER),
    User(id="worker-2", email="w2@example.com", role=Role.WORKER),
]


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings()


@pytest.fixture
def store() -> MemoryEntityStore:
    store = MemoryEntityStore()
    for user in SEED_USERS:
        store.put_user(user)
    return store


@pytest.fixture
def cache() -> MemoryCacheBackend:
    return MemoryCacheBackend()


@pytest.fixture
def file_store() -> MemoryFileStore:
    return MemoryFileStore()


@pytest.fixture
def orchestrator(store, cache, settings) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(store=store, cache=cache, settings=settings)


@pytest.fixture
def directory(store) -> UserDirectory:
    return UserDirectory(store)


@pytest.fixture
def manager() -> Caller:
    return Caller(user_id="manager-1", role=Role.MANAGER)


@pytest.fixture
def other_manager() -> Caller:
    return Caller(user_id="manager-2", role=Role.MANAGER)


@pytest.fixture
def viewer() -> Caller:
    return Caller(user_id="viewer-1", role=Role.MANAGER_VIEW_ONLY)


@pytest.fixture
def worker() -> Caller:
    return Caller(user_id="worker-1", role=Role.WORKER)


@pytest.fixture
def other_worker() -> Caller:
    return Caller(user_id="worker-2", role=Role.WORKER)


def photo(name: str = "site.jpg", mime_type: str = "image/jpeg", size: int = 2048) -> FileMeta:
    return FileMeta(filename=f"step-photos/{name}", original_name=name, mime_type=mime_type, size=size)


@pytest.fixture
def make_job(orchestrator, manager) -> Callable[..., JobWithSteps]:
    """Create a job for worker-1 with steps titled A, B, C, ..."""

    def _make(n_steps: int = 3, worker_id: str = "worker-1", title: str = "Install shelving"):
        drafts = [StepDraft(title=chr(ord("A") + i)) for i in range(n_steps)]
        return orchestrator.create_job(manager, title=title, worker_id=worker_id, steps=drafts)

    return _make
