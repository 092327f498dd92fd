"""Dict-backed in-memory backends for local runs and unit tests."""

from __future__ import annotations

import threading
from typing import Optional, TypeVar

from pydantic import BaseModel

from stepflow.core.exceptions import ConcurrentUpdateError, NotFoundError, StorageError
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
    utcnow,
)

M = TypeVar("M", bound=BaseModel)


def _copy(model: M) -> M:
    return model.model_copy(deep=True)


class MemoryEntityStore:
    """Dict-backed IEntityStore.

    A re-entrant lock makes every public method atomic, which is what gives
    ``apply_change`` its compare-and-set semantics.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._users: dict[str, User] = {}
        self._jobs: dict[str, Job] = {}
        self._steps: dict[str, Step] = {}
        self._uploads: dict[str, Upload] = {}
        self._reviews: dict[str, Review] = {}
        self._document_sets: dict[str, DocumentSet] = {}
        self._documents: dict[str, Document] = {}

    # ---- users ----

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            user = self._users.get(user_id)
            return _copy(user) if user else None

    def list_users(self) -> list[User]:
        with self._lock:
            return [_copy(u) for u in self._users.values()]

    def put_user(self, user: User) -> User:
        with self._lock:
            existing = self._users.get(user.id)
            stored = user.model_copy(update={"updated_at": utcnow()})
            if existing is not None:
                stored = stored.model_copy(update={"created_at": existing.created_at})
            self._users[user.id] = stored
            return _copy(stored)

    def update_user_role(self, user_id: str, role: Role) -> None:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            self._users[user_id] = user.model_copy(update={"role": role, "updated_at": utcnow()})

    # ---- jobs ----

    def create_job(self, job: Job, steps: list[Step]) -> None:
        with self._lock:
            if job.id in self._jobs:
                raise StorageError(f"Job {job.id} already exists")
            orders = [s.order for s in steps]
            if len(set(orders)) != len(orders):
                raise StorageError(f"Duplicate step order in job {job.id}")
            self._jobs[job.id] = _copy(job)
            for step in steps:
                self._steps[step.id] = _copy(step)

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            return _copy(job) if job else None

    def list_jobs(
        self, *, manager_id: str | None = None, worker_id: str | None = None
    ) -> list[Job]:
        with self._lock:
            return [
                _copy(j) for j in self._jobs.values()
                if (manager_id is None or j.manager_id == manager_id)
                and (worker_id is None or j.worker_id == worker_id)
            ]

    def delete_job(self, job_id: str) -> None:
        with self._lock:
            for step_id in [s.id for s in self._steps.values() if s.job_id == job_id]:
                self._delete_step_locked(step_id)
            self._jobs.pop(job_id, None)

    # ---- steps ----

    def get_step(self, step_id: str) -> Optional[Step]:
        with self._lock:
            step = self._steps.get(step_id)
            return _copy(step) if step else None

    def list_steps(self, job_id: str) -> list[Step]:
        with self._lock:
            steps = [_copy(s) for s in self._steps.values() if s.job_id == job_id]
        return sorted(steps, key=lambda s: s.order)

    def delete_step(self, step_id: str) -> None:
        with self._lock:
            self._delete_step_locked(step_id)

    def _delete_step_locked(self, step_id: str) -> None:
        upload_ids = [u.id for u in self._uploads.values() if u.step_id == step_id]
        for review_id in [r.id for r in self._reviews.values() if r.upload_id in upload_ids]:
            del self._reviews[review_id]
        for upload_id in upload_ids:
            del self._uploads[upload_id]
        self._steps.pop(step_id, None)

    # ---- uploads / reviews ----

    def get_upload(self, upload_id: str) -> Optional[Upload]:
        with self._lock:
            upload = self._uploads.get(upload_id)
            return _copy(upload) if upload else None

    def list_uploads(self, step_id: str) -> list[Upload]:
        with self._lock:
            uploads = [_copy(u) for u in self._uploads.values() if u.step_id == step_id]
        return sorted(uploads, key=lambda u: u.sequence)

    def list_reviews(self, upload_id: str) -> list[Review]:
        with self._lock:
            reviews = [_copy(r) for r in self._reviews.values() if r.upload_id == upload_id]
        return sorted(reviews, key=lambda r: r.reviewed_at)

    # ---- change sets ----

    def apply_change(self, change: WorkflowChange) -> None:
        with self._lock:
            job = self._jobs.get(change.job_id)
            if job is None:
                raise ConcurrentUpdateError(change.job_id, "job no longer exists")
            if change.expected_version is not None and job.version != change.expected_version:
                raise ConcurrentUpdateError(
                    change.job_id,
                    f"job is at version {job.version}, expected {change.expected_version}",
                )
            for t in change.transitions:
                step = self._job_step(change.job_id, t.step_id)
                if step.status != t.expected:
                    raise ConcurrentUpdateError(
                        change.job_id,
                        f"step {t.step_id} is {step.status}, expected {t.expected}",
                    )
                if t.expected_upload_id is not None and step.latest_upload_id != t.expected_upload_id:
                    raise ConcurrentUpdateError(
                        change.job_id,
                        f"step {t.step_id} latest upload is {step.latest_upload_id}, "
                        f"expected {t.expected_upload_id}",
                    )
            if change.upload is not None:
                self._job_step(change.job_id, change.upload.step_id)
                if change.upload.id in self._uploads:
                    raise StorageError(f"Upload {change.upload.id} already exists")
            if change.review is not None and change.review.id in self._reviews:
                raise StorageError(f"Review {change.review.id} already exists")
            if change.deleted_step_id is not None:
                self._job_step(change.job_id, change.deleted_step_id)

            now = utcnow()
            for t in change.transitions:
                self._steps[t.step_id] = self._steps[t.step_id].model_copy(
                    update={"status": t.target, "updated_at": now}
                )
            if change.upload is not None:
                self._uploads[change.upload.id] = _copy(change.upload)
                step_id = change.upload.step_id
                self._steps[step_id] = self._steps[step_id].model_copy(
                    update={"latest_upload_id": change.upload.id, "updated_at": now}
                )
            if change.review is not None:
                self._reviews[change.review.id] = _copy(change.review)
            if change.deleted_step_id is not None:
                self._delete_step_locked(change.deleted_step_id)
            update: dict = {"version": job.version + 1, "updated_at": now}
            if change.job_status is not None:
                update["status"] = change.job_status
            self._jobs[change.job_id] = job.model_copy(update=update)

    def _job_step(self, job_id: str, step_id: str) -> Step:
        step = self._steps.get(step_id)
        if step is None or step.job_id != job_id:
            raise ConcurrentUpdateError(job_id, f"step {step_id} no longer exists")
        return step

    # ---- document sets ----

    def create_document_set(self, document_set: DocumentSet, documents: list[Document]) -> None:
        with self._lock:
            if document_set.id in self._document_sets:
                raise StorageError(f"Document set {document_set.id} already exists")
            self._document_sets[document_set.id] = _copy(document_set)
            for document in documents:
                self._documents[document.id] = _copy(document)

    def get_document_set(self, set_id: str) -> Optional[DocumentSet]:
        with self._lock:
            document_set = self._document_sets.get(set_id)
            return _copy(document_set) if document_set else None

    def list_document_sets(self, *, manager_id: str | None = None) -> list[DocumentSet]:
        with self._lock:
            return [
                _copy(s) for s in self._document_sets.values()
                if manager_id is None or s.manager_id == manager_id
            ]

    def list_documents(self, set_id: str) -> list[Document]:
        with self._lock:
            documents = [_copy(d) for d in self._documents.values() if d.document_set_id == set_id]
        return sorted(documents, key=lambda d: d.order)

    def delete_document_set(self, set_id: str) -> None:
        with self._lock:
            for document_id in [d.id for d in self._documents.values() if d.document_set_id == set_id]:
                del self._documents[document_id]
            self._document_sets.pop(set_id, None)


class MemoryCacheBackend:
    """Dict-backed ICacheBackend for unit tests."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self._store[key] = value

    def delete(self, key: str) -> None:
        self._store.pop(key, None)


class MemoryFileStore:
    """Dict-backed IFileStore for unit tests."""

    def __init__(self) -> None:
        self._files: dict[str, bytes] = {}

    def read(self, path: str) -> bytes:
        if path not in self._files:
            raise NotFoundError("File", path)
        return self._files[path]

    def write(self, path: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        self._files[path] = data
        return path

    def delete(self, path: str) -> None:
        self._files.pop(path, None)
