"""Job aggregation: derive job status from steps and decide which step is next.

Everything here is a pure function of the step list. The stored job status is
a cache of ``compute_job_status`` and is rewritten in the same change set as
every step transition.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterable, Optional, Sequence

from stepflow.models.changes import StepTransition
from stepflow.models.entities import JobStatus, Step, StepStatus
from stepflow.workflow.state_machine import StepEvent, is_active, plan

logger = logging.getLogger(__name__)


def compute_job_status(steps: Iterable[Step]) -> JobStatus:
    return job_status_for(step.status for step in steps)


def job_status_for(statuses: Iterable[StepStatus]) -> JobStatus:
    """Aggregate step statuses into a job status.

    any awaiting_review -> awaiting_review; all approved -> completed;
    any step past pending -> in_progress; otherwise pending.
    """
    statuses = list(statuses)
    if any(s == StepStatus.AWAITING_REVIEW for s in statuses):
        return JobStatus.AWAITING_REVIEW
    if statuses and all(s == StepStatus.APPROVED for s in statuses):
        return JobStatus.COMPLETED
    if any(s != StepStatus.PENDING for s in statuses):
        return JobStatus.IN_PROGRESS
    return JobStatus.PENDING


def order_steps(steps: Iterable[Step]) -> list[Step]:
    # sorted() is stable: on duplicate orders the first stored step wins
    return sorted(steps, key=lambda s: s.order)


def duplicate_orders(steps: Iterable[Step]) -> list[int]:
    counts = Counter(step.order for step in steps)
    return sorted(order for order, n in counts.items() if n > 1)


def active_step(steps: Iterable[Step]) -> Optional[Step]:
    """The step currently accepting uploads or awaiting review."""
    return next((s for s in order_steps(steps) if is_active(s.status)), None)


def active_count(steps: Iterable[Step]) -> int:
    return sum(1 for s in steps if is_active(s.status))


def current_step(steps: Iterable[Step]) -> Optional[Step]:
    """First step, by order, that is not yet approved."""
    return next((s for s in order_steps(steps) if s.status != StepStatus.APPROVED), None)


def project_statuses(
    steps: Iterable[Step], transitions: Iterable[StepTransition]
) -> dict[str, StepStatus]:
    """Step statuses keyed by step id after ``transitions`` are applied."""
    projected = {step.id: step.status for step in steps}
    for t in transitions:
        projected[t.step_id] = t.target
    return projected


def activate_next_step(
    steps: Sequence[Step], just_approved: Step
) -> tuple[list[StepTransition], JobStatus]:
    """Follow-up of approving ``just_approved``.

    ``steps`` are the job's steps as stored before the approval lands. Returns
    the activation transition (if a pending step follows) and the job status
    the whole change set leaves behind.
    """
    ordered = order_steps(steps)
    dupes = duplicate_orders(ordered)
    if dupes:
        logger.warning(
            "Job %s has duplicate step orders %s; first in order wins",
            just_approved.job_id, dupes,
        )

    approval = StepTransition(
        step_id=just_approved.id, expected=StepStatus.AWAITING_REVIEW, target=StepStatus.APPROVED
    )
    follow_ups: list[StepTransition] = []
    nxt = next(
        (
            s for s in ordered
            if s.order > just_approved.order and s.status == StepStatus.PENDING
        ),
        None,
    )
    if nxt is not None:
        follow_ups.append(plan(nxt, StepEvent.ACTIVATE))

    projected = project_statuses(ordered, [approval, *follow_ups])
    job_status = job_status_for(projected.values())
    if nxt is None and job_status != JobStatus.COMPLETED:
        logger.warning(
            "Job %s has no pending step after order %d but is not complete",
            just_approved.job_id, just_approved.order,
        )
    return follow_ups, job_status


def reconcile(steps: Sequence[Step]) -> list[StepTransition]:
    """Re-open the workflow when no step is active but the job is unfinished.

    Activates the first pending step whose predecessors are all approved. Used
    after a step is deleted out from under a job.
    """
    ordered = order_steps(steps)
    if active_count(ordered) > 0:
        return []
    for step in ordered:
        if step.status == StepStatus.APPROVED:
            continue
        if step.status == StepStatus.PENDING:
            return [plan(step, StepEvent.ACTIVATE)]
        break
    return []
