"""Caller capability and the Forbidden policy.

The boundary resolves who is calling once and passes a ``Caller`` into every
orchestrator operation; nothing below looks roles up on its own.
"""

from __future__ import annotations

from pydantic import BaseModel

from stepflow.core.exceptions import ForbiddenError
from stepflow.models.entities import DocumentSet, Job, Role

MANAGER_ROLES = frozenset({Role.MANAGER, Role.MANAGER_VIEW_ONLY})


class Caller(BaseModel):
    """Resolved identity and role of whoever invokes an operation."""

    user_id: str
    role: Role

    model_config = {"frozen": True}

    @property
    def is_manager(self) -> bool:
        return self.role == Role.MANAGER

    @property
    def can_read_all_jobs(self) -> bool:
        return self.role in MANAGER_ROLES


def require_role(caller: Caller, action: str, *roles: Role) -> None:
    if caller.role not in roles:
        allowed = ", ".join(str(r) for r in roles)
        raise ForbiddenError(action, f"requires role {allowed}, caller is {caller.role}")


def require_job_manager(caller: Caller, job: Job, action: str) -> None:
    """Only the manager who owns ``job`` may mutate it or review its uploads."""
    require_role(caller, action, Role.MANAGER)
    if job.manager_id != caller.user_id:
        raise ForbiddenError(action, f"job {job.id} is managed by another user")


def require_assigned_worker(caller: Caller, job: Job, action: str) -> None:
    require_role(caller, action, Role.WORKER)
    if job.worker_id != caller.user_id:
        raise ForbiddenError(action, f"job {job.id} is assigned to another worker")


def require_job_reader(caller: Caller, job: Job) -> None:
    if caller.can_read_all_jobs:
        return
    if job.worker_id != caller.user_id:
        raise ForbiddenError("view job", f"job {job.id} is assigned to another worker")


def require_document_set_owner(caller: Caller, document_set: DocumentSet, action: str) -> None:
    require_role(caller, action, Role.MANAGER)
    if document_set.manager_id != caller.user_id:
        raise ForbiddenError(action, f"document set {document_set.id} belongs to another manager")


def require_document_set_reader(caller: Caller, document_set: DocumentSet) -> None:
    """View-only managers read every set; managers read their own."""
    if caller.role == Role.MANAGER_VIEW_ONLY:
        return
    require_document_set_owner(caller, document_set, "view document set")
