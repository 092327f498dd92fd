"""Persisted workflow entities: users, jobs, steps, uploads, reviews."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class Role(StrEnum):
    MANAGER = "manager"
    MANAGER_VIEW_ONLY = "manager_view_only"
    WORKER = "worker"


class JobStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    AWAITING_REVIEW = "awaiting_review"
    COMPLETED = "completed"


class StepStatus(StrEnum):
    PENDING = "pending"
    AWAITING_UPLOAD = "awaiting_upload"
    AWAITING_REVIEW = "awaiting_review"
    APPROVED = "approved"
    REJECTED = "rejected"  # display label; legacy rows may still carry it


class ReviewDecision(StrEnum):
    APPROVED = "approved"
    REJECTED = "rejected"


class User(BaseModel):
    """A platform user. Role decides what the user may do."""

    id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    role: Role = Role.WORKER
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Job(BaseModel):
    """A unit of work assigned by a manager to a worker.

    ``status`` caches ``compute_job_status`` over the job's steps.
    ``version`` is bumped by every applied change set; a change set read
    against an older version is refused.
    """

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    manager_id: str
    worker_id: str
    status: JobStatus = JobStatus.PENDING
    version: int = Field(default=0, ge=0)
    deadline: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Step(BaseModel):
    """One ordered unit of a job."""

    id: str = Field(default_factory=new_id)
    job_id: str
    title: str
    description: str = ""
    instructions: str = ""
    order: int = Field(ge=1)
    status: StepStatus = StepStatus.PENDING
    latest_upload_id: Optional[str] = None  # set in the same write as the upload
    deadline: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FileMeta(BaseModel):
    """Stored-file reference for a submitted file. The bytes live elsewhere."""

    filename: str
    original_name: str
    mime_type: str
    size: int = Field(ge=0)


class Upload(BaseModel):
    """A worker's photo submission. Immutable once written."""

    id: str = Field(default_factory=new_id)
    step_id: str
    worker_id: str
    sequence: int = Field(ge=1)  # position in the step's upload history
    filename: str
    original_name: str
    mime_type: str
    size: int = Field(ge=0)
    uploaded_at: datetime = Field(default_factory=utcnow)


class Review(BaseModel):
    """A manager's decision on exactly one upload."""

    id: str = Field(default_factory=new_id)
    upload_id: str
    manager_id: str
    decision: ReviewDecision
    feedback: Optional[str] = None
    reviewed_at: datetime = Field(default_factory=utcnow)


class StepDraft(BaseModel):
    """Manager input for one step of a new job."""

    title: str
    description: str = ""
    instructions: str = ""
    deadline: Optional[datetime] = None

    model_config = {"str_strip_whitespace": True}


class DocumentSet(BaseModel):
    """A titled bundle of reference documents owned by one manager."""

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    manager_id: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Document(BaseModel):
    id: str = Field(default_factory=new_id)
    document_set_id: str
    title: str
    description: str = ""
    order: int = Field(ge=1)
    filename: str
    original_name: str
    mime_type: str
    size: int = Field(ge=0)
    created_at: datetime = Field(default_factory=utcnow)


class DocumentDraft(BaseModel):
    """Optional per-file title and description sent alongside the files."""

    title: str = ""
    description: str = ""

    model_config = {"str_strip_whitespace": True}
