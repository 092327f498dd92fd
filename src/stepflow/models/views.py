"""Read-side views: jobs with their steps, uploads and reviews; document sets."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from stepflow.models.entities import (
    Document,
    DocumentSet,
    Job,
    Review,
    Step,
    StepStatus,
    Upload,
    User,
)


class UploadWithReviews(Upload):
    reviews: list[Review] = Field(default_factory=list)


class StepWithUploads(Step):
    """A step plus its upload history, oldest first."""

    uploads: list[UploadWithReviews] = Field(default_factory=list)
    display_status: StepStatus = StepStatus.PENDING
    latest_feedback: Optional[str] = None


class JobWithSteps(Job):
    """A job with its steps ordered by ``order``."""

    steps: list[StepWithUploads] = Field(default_factory=list)
    active_step_id: Optional[str] = None
    approved_steps: int = 0
    total_steps: int = 0


class CurrentStep(BaseModel):
    """The step a worker should act on next."""

    job: Job
    step: StepWithUploads


class DocumentSetWithDocuments(DocumentSet):
    """A document set, its documents in upload order, and its owner."""

    documents: list[Document] = Field(default_factory=list)
    manager: Optional[User] = None
