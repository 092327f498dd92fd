"""Change sets the workflow hands to the entity store for atomic application."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from stepflow.models.entities import JobStatus, Review, StepStatus, Upload


class StepTransition(BaseModel):
    """Move one step from ``expected`` to ``target``.

    The store refuses the transition when the step's stored status is no
    longer ``expected``, or, when ``expected_upload_id`` is set, when the
    step's latest upload is no longer that upload.
    """

    step_id: str
    expected: StepStatus
    target: StepStatus
    expected_upload_id: Optional[str] = None


class WorkflowChange(BaseModel):
    """Everything one orchestrator operation writes, applied all-or-nothing.

    Applying a change bumps the job's ``version``. With ``expected_version``
    set, the change is refused unless the job is still at that version, so
    a job status derived from a snapshot of the steps cannot overwrite a
    newer one.
    """

    job_id: str
    expected_version: Optional[int] = None
    job_status: Optional[JobStatus] = None
    transitions: list[StepTransition] = Field(default_factory=list)
    upload: Optional[Upload] = None
    review: Optional[Review] = None
    deleted_step_id: Optional[str] = None

    @property
    def step_id(self) -> Optional[str]:
        """The step this change is about, for error reporting."""
        if self.transitions:
            return self.transitions[0].step_id
        return self.deleted_step_id
