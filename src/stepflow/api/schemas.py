"""Request bodies accepted by the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from stepflow.models.entities import StepDraft


class CreateJobRequest(BaseModel):
    title: str
    description: str = ""
    worker_id: str
    deadline: Optional[datetime] = None
    steps: list[StepDraft] = Field(default_factory=list)


class ReviewRequest(BaseModel):
    upload_id: str
    decision: str  # checked by the orchestrator so bad values map to ValidationError
    feedback: Optional[str] = None


class RoleUpdateRequest(BaseModel):
    role: str
