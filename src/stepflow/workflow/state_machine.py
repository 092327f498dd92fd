"""Step state machine.

Pure decision logic: given a step's status and an event, return the next
status or refuse with InvalidStateError. Nothing here touches storage.

    pending ──activate──▶ awaiting_upload ──upload──▶ awaiting_review
                               ▲                          │    │
                               └─────────reject───────────┘    approve
                                                               ▼
                                                           approved

A rejection puts the stored status back to ``awaiting_upload``. ``rejected``
survives only as a display label for a step whose latest upload was turned
down; rows stored as ``rejected`` by older writers still accept uploads.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Sequence

from stepflow.core.exceptions import InvalidStateError
from stepflow.models.changes import StepTransition
from stepflow.models.entities import ReviewDecision, Step, StepStatus
from stepflow.models.views import UploadWithReviews


class StepEvent(StrEnum):
    ACTIVATE = "activate"
    UPLOAD = "upload"
    APPROVE = "approve"
    REJECT = "reject"


UPLOAD_ELIGIBLE = frozenset({StepStatus.AWAITING_UPLOAD, StepStatus.REJECTED})
ACTIVE_STATUSES = frozenset(
    {StepStatus.AWAITING_UPLOAD, StepStatus.AWAITING_REVIEW, StepStatus.REJECTED}
)

_TRANSITIONS: dict[tuple[StepStatus, StepEvent], StepStatus] = {
    (StepStatus.PENDING, StepEvent.ACTIVATE): StepStatus.AWAITING_UPLOAD,
    (StepStatus.AWAITING_UPLOAD, StepEvent.UPLOAD): StepStatus.AWAITING_REVIEW,
    (StepStatus.REJECTED, StepEvent.UPLOAD): StepStatus.AWAITING_REVIEW,
    (StepStatus.AWAITING_REVIEW, StepEvent.APPROVE): StepStatus.APPROVED,
    (StepStatus.AWAITING_REVIEW, StepEvent.REJECT): StepStatus.AWAITING_UPLOAD,
}

_REFUSALS: dict[StepStatus, str] = {
    StepStatus.PENDING: "step is locked until the earlier steps are approved",
    StepStatus.AWAITING_UPLOAD: "step has no submission awaiting review",
    StepStatus.REJECTED: "step has no submission awaiting review",
    StepStatus.AWAITING_REVIEW: "step has a submission awaiting review",
    StepStatus.APPROVED: "step is already approved",
}


def next_status(current: StepStatus, event: StepEvent) -> StepStatus:
    """Return the status ``event`` moves a step in ``current`` to."""
    target = _TRANSITIONS.get((StepStatus(current), event))
    if target is None:
        if event == StepEvent.ACTIVATE:
            reason = f"only pending steps can be activated (step is {current})"
        else:
            reason = _REFUSALS[StepStatus(current)]
        raise InvalidStateError(f"Cannot {event} step: {reason}", status=str(current))
    return target


def plan(step: Step, event: StepEvent) -> StepTransition:
    """Build the guarded transition for ``event`` on ``step``."""
    try:
        target = next_status(step.status, event)
    except InvalidStateError as exc:
        raise InvalidStateError(str(exc), step_id=step.id, status=str(step.status)) from None
    return StepTransition(step_id=step.id, expected=step.status, target=target)


def event_for_decision(decision: ReviewDecision) -> StepEvent:
    return StepEvent.APPROVE if decision == ReviewDecision.APPROVED else StepEvent.REJECT


def initial_status(position: int) -> StepStatus:
    """Status for the step at zero-based ``position`` of a new job."""
    return StepStatus.AWAITING_UPLOAD if position == 0 else StepStatus.PENDING


def is_upload_eligible(status: StepStatus) -> bool:
    return status in UPLOAD_ELIGIBLE


def is_active(status: StepStatus) -> bool:
    return status in ACTIVE_STATUSES


def display_status(step: Step, uploads: Sequence[UploadWithReviews]) -> StepStatus:
    """Status to show for ``step``: ``rejected`` when its latest upload was turned down."""
    if not is_upload_eligible(step.status) or not uploads:
        return step.status
    latest = uploads[-1]
    if latest.reviews and latest.reviews[-1].decision == ReviewDecision.REJECTED:
        return StepStatus.REJECTED
    return step.status


def latest_feedback(uploads: Sequence[UploadWithReviews]) -> str | None:
    """Feedback of the most recent rejection on the step, if any."""
    for upload in reversed(uploads):
        for review in reversed(upload.reviews):
            if review.decision == ReviewDecision.REJECTED:
                return review.feedback
    return None
