"""StepFlow exception hierarchy."""

from __future__ import annotations


class StepFlowError(Exception):
    """Base exception for all StepFlow errors."""


class NotFoundError(StepFlowError):
    """A referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id!r} not found")


class ForbiddenError(StepFlowError):
    """Caller's role or ownership does not permit the action."""

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(f"Not allowed to {action}: {reason}")


class InvalidStateError(StepFlowError):
    """The step or job is not in a state that accepts the operation."""

    def __init__(self, message: str, step_id: str | None = None, status: str | None = None) -> None:
        self.step_id = step_id
        self.status = status
        super().__init__(message)


class ValidationError(StepFlowError):
    """Malformed input: missing feedback, empty step list, bad file metadata."""


class IdempotencyConflictError(ValidationError):
    """An idempotency key was reused with a different payload."""

    def __init__(self, scope: str, key: str) -> None:
        self.scope = scope
        self.key = key
        super().__init__(f"Idempotency key {key!r} already used for a different {scope} request")


class StorageError(StepFlowError):
    """Entity store I/O failed."""


class ConcurrentUpdateError(StorageError):
    """A conditional write lost against a concurrent change."""

    def __init__(self, job_id: str, detail: str = "") -> None:
        self.job_id = job_id
        self.detail = detail
        super().__init__(f"Concurrent update on job {job_id}" + (f": {detail}" if detail else ""))


class CacheError(StepFlowError):
    """Cache backend operation failed."""
