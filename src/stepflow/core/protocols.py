"""Protocol interfaces for all StepFlow collaborators.

The workflow core reaches persistence through these Protocols only; backends
satisfy them structurally.
"""

from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from stepflow.models.changes import WorkflowChange
from stepflow.models.entities import (
    Document,
    DocumentSet,
    Job,
    Review,
    Role,
    Step,
    Upload,
    User,
)


# ---------------------------------------------------------------------------
# Persistence: Entity Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IEntityStore(Protocol):
    """Durable records for users, jobs, steps, uploads, reviews and document sets."""

    # users
    def get_user(self, user_id: str) -> Optional[User]: ...

    def list_users(self) -> list[User]: ...

    def put_user(self, user: User) -> User: ...

    def update_user_role(self, user_id: str, role: Role) -> None: ...

    # jobs
    def create_job(self, job: Job, steps: list[Step]) -> None:
        """Write a job and all its steps, or nothing."""
        ...

    def get_job(self, job_id: str) -> Optional[Job]: ...

    def list_jobs(
        self, *, manager_id: str | None = None, worker_id: str | None = None
    ) -> list[Job]: ...

    def delete_job(self, job_id: str) -> None:
        """Delete reviews, uploads, steps, then the job."""
        ...

    # steps
    def get_step(self, step_id: str) -> Optional[Step]: ...

    def list_steps(self, job_id: str) -> list[Step]:
        """Current steps of a job ordered by ``order`` ascending."""
        ...

    def delete_step(self, step_id: str) -> None:
        """Delete the step's reviews, uploads, then the step, if still present."""
        ...

    # uploads / reviews
    def get_upload(self, upload_id: str) -> Optional[Upload]: ...

    def list_uploads(self, step_id: str) -> list[Upload]:
        """Uploads of a step ordered by ``sequence`` ascending."""
        ...

    def list_reviews(self, upload_id: str) -> list[Review]: ...

    # atomic change sets
    def apply_change(self, change: WorkflowChange) -> None:
        """Apply every write of ``change`` or none, and bump the job version.

        An upload also stamps its step's ``latest_upload_id``. Raises
        ConcurrentUpdateError when the job is not at ``expected_version``, a
        transition's expected status or upload no longer matches the stored
        step, or the step to delete is gone.
        """
        ...

    # document sets
    def create_document_set(self, document_set: DocumentSet, documents: list[Document]) -> None:
        """Write a document set and all its documents, or nothing."""
        ...

    def get_document_set(self, set_id: str) -> Optional[DocumentSet]: ...

    def list_document_sets(self, *, manager_id: str | None = None) -> list[DocumentSet]: ...

    def list_documents(self, set_id: str) -> list[Document]:
        """Documents of a set ordered by ``order`` ascending."""
        ...

    def delete_document_set(self, set_id: str) -> None: ...


# ---------------------------------------------------------------------------
# Persistence: Cache Backend
# ---------------------------------------------------------------------------

@runtime_checkable
class ICacheBackend(Protocol):
    """Redis-compatible cache interface."""

    def get(self, key: str) -> str | None: ...

    def setex(self, key: str, ttl: int, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Persistence: File Store
# ---------------------------------------------------------------------------

@runtime_checkable
class IFileStore(Protocol):
    """S3-compatible storage for photo bytes, keyed by opaque filename."""

    def read(self, path: str) -> bytes: ...

    def write(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str: ...

    def delete(self, path: str) -> None: ...
