"""Workflow entry points: job creation, uploads, reviews, deletes and reads.

Each mutating operation reads the job, then the steps it needs, asks the state
machine and the aggregation logic for the transitions, and hands the store a
single ``WorkflowChange``. The store applies it all-or-nothing, guarded by the
job version it was planned against and by each step's expected prior status,
so the loser of a race sees InvalidStateError instead of a double-applied
side effect or a stale job status.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional, Sequence

from stepflow.core.config import AppSettings
from stepflow.core.exceptions import (
    ConcurrentUpdateError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from stepflow.core.protocols import ICacheBackend, IEntityStore
from stepflow.models.changes import StepTransition, WorkflowChange
from stepflow.models.entities import (
    FileMeta,
    Job,
    JobStatus,
    ReviewDecision,
    Review,
    Role,
    Step,
    StepDraft,
    StepStatus,
    Upload,
    new_id,
)
from stepflow.models.views import CurrentStep, JobWithSteps, StepWithUploads, UploadWithReviews
from stepflow.workflow import state_machine
from stepflow.workflow.aggregation import (
    activate_next_step,
    active_step,
    compute_job_status,
    current_step,
    duplicate_orders,
    job_status_for,
    order_steps,
    project_statuses,
    reconcile,
)
from stepflow.workflow.authorization import (
    Caller,
    require_assigned_worker,
    require_job_manager,
    require_job_reader,
    require_role,
)
from stepflow.workflow.files import check_file
from stepflow.workflow.idempotency import IdempotencyGuard
from stepflow.workflow.state_machine import StepEvent

logger = logging.getLogger(__name__)


class WorkflowOrchestrator:
    """Coordinates the step state machine, job aggregation and the entity store."""

    def __init__(
        self,
        *,
        store: IEntityStore,
        cache: ICacheBackend,
        settings: AppSettings,
    ) -> None:
        self._store = store
        self._settings = settings
        self._idempotency = IdempotencyGuard(cache, settings.workflow.idempotency_ttl_seconds)

    # ---- lookups ----

    def _job(self, job_id: str) -> Job:
        job = self._store.get_job(job_id)
        if job is None:
            raise NotFoundError("Job", job_id)
        return job

    def _step(self, step_id: str) -> Step:
        step = self._store.get_step(step_id)
        if step is None:
            raise NotFoundError("Step", step_id)
        return step

    def _upload(self, upload_id: str) -> Upload:
        upload = self._store.get_upload(upload_id)
        if upload is None:
            raise NotFoundError("Upload", upload_id)
        return upload

    def _snapshot(self, step_id: str) -> tuple[Job, Step, list[Step]]:
        """The step's job, then the step and its siblings as of that job version."""
        job = self._job(self._step(step_id).job_id)
        siblings = self._store.list_steps(job.id)
        for step in siblings:
            if step.id == step_id:
                return job, step, siblings
        raise NotFoundError("Step", step_id)

    def _commit(self, change: WorkflowChange) -> None:
        try:
            self._store.apply_change(change)
        except ConcurrentUpdateError as exc:
            logger.warning("Lost a concurrent update on job %s: %s", change.job_id, exc.detail)
            raise InvalidStateError(
                "Job changed while the request was processed; reload and retry",
                step_id=change.step_id,
            ) from exc

    # ---- create ----

    def create_job(
        self,
        caller: Caller,
        *,
        title: str,
        worker_id: str,
        steps: Sequence[StepDraft],
        description: str = "",
        deadline: Optional[datetime] = None,
    ) -> JobWithSteps:
        """Create a job and all of its steps in one write."""
        require_role(caller, "create job", Role.MANAGER)

        title = (title or "").strip()
        if not title:
            raise ValidationError("Job title is required")
        if not steps:
            raise ValidationError("A job needs at least one step")
        limit = self._settings.workflow.max_steps_per_job
        if len(steps) > limit:
            raise ValidationError(f"A job can have at most {limit} steps, got {len(steps)}")
        for position, draft in enumerate(steps, start=1):
            if not draft.title:
                raise ValidationError(f"Step {position} title is required")

        worker = self._store.get_user(worker_id)
        if worker is None:
            raise NotFoundError("User", worker_id)
        if worker.role != Role.WORKER:
            raise ValidationError(f"User {worker_id} is not a worker (role {worker.role})")

        job_id = new_id()
        new_steps = [
            Step(
                job_id=job_id,
                title=draft.title,
                description=draft.description,
                instructions=draft.instructions,
                order=position + 1,
                status=state_machine.initial_status(position),
                deadline=draft.deadline,
            )
            for position, draft in enumerate(steps)
        ]
        job = Job(
            id=job_id,
            title=title,
            description=description or "",
            manager_id=caller.user_id,
            worker_id=worker_id,
            status=compute_job_status(new_steps),
            deadline=deadline,
        )
        self._store.create_job(job, new_steps)
        logger.info(
            "Created job %s with %d steps for worker %s", job.id, len(new_steps), worker_id
        )
        return self._build_view(job, new_steps)

    # ---- uploads ----

    def submit_upload(
        self,
        caller: Caller,
        step_id: str,
        file: FileMeta,
        *,
        idempotency_key: Optional[str] = None,
    ) -> Upload:
        """Record a worker's photo for ``step_id`` and lock the step for review."""
        return self._idempotency.run(
            scope="upload",
            caller_id=caller.user_id,
            key=idempotency_key,
            payload={"step_id": step_id, "file": file.model_dump(exclude={"filename"})},
            model=Upload,
            execute=lambda: self._submit_upload(caller, step_id, file),
        )

    def _submit_upload(self, caller: Caller, step_id: str, file: FileMeta) -> Upload:
        job, step, siblings = self._snapshot(step_id)
        require_assigned_worker(caller, job, "upload a photo")
        check_file(file, self._settings.upload)

        transition = state_machine.plan(step, StepEvent.UPLOAD)
        previous = self._store.get_upload(step.latest_upload_id) if step.latest_upload_id else None
        upload = Upload(
            step_id=step.id,
            worker_id=caller.user_id,
            sequence=previous.sequence + 1 if previous else 1,
            **file.model_dump(),
        )
        self._commit(
            WorkflowChange(
                job_id=job.id,
                expected_version=job.version,
                job_status=job_status_for(project_statuses(siblings, [transition]).values()),
                transitions=[transition],
                upload=upload,
            )
        )
        logger.info(
            "Upload %s (#%d) on step %s of job %s; step %s -> %s",
            upload.id, upload.sequence, step.id, job.id, transition.expected, transition.target,
        )
        return upload

    # ---- reviews ----

    def submit_review(
        self,
        caller: Caller,
        upload_id: str,
        decision: ReviewDecision | str,
        feedback: Optional[str] = None,
        *,
        idempotency_key: Optional[str] = None,
    ) -> Review:
        """Approve or reject the latest upload of a step awaiting review."""
        return self._idempotency.run(
            scope="review",
            caller_id=caller.user_id,
            key=idempotency_key,
            payload={"upload_id": upload_id, "decision": str(decision), "feedback": feedback},
            model=Review,
            execute=lambda: self._submit_review(caller, upload_id, decision, feedback),
        )

    def _submit_review(
        self,
        caller: Caller,
        upload_id: str,
        decision: ReviewDecision | str,
        feedback: Optional[str],
    ) -> Review:
        upload = self._upload(upload_id)
        job, step, siblings = self._snapshot(upload.step_id)
        require_job_manager(caller, job, "review an upload")

        try:
            decision = ReviewDecision(decision)
        except ValueError:
            raise ValidationError(f"Unknown review decision {decision!r}") from None
        feedback = (feedback or "").strip() or None
        if decision == ReviewDecision.REJECTED and not feedback:
            raise ValidationError("Feedback is required when rejecting an upload")

        # Reviewing moves the step on, so awaiting review on its latest upload means unreviewed.
        transition = state_machine.plan(step, state_machine.event_for_decision(decision))
        if step.latest_upload_id != upload.id:
            raise InvalidStateError(
                f"Upload {upload.id} is not the latest submission for step {step.id}",
                step_id=step.id,
                status=str(step.status),
            )
        transition = transition.model_copy(update={"expected_upload_id": upload.id})

        transitions: list[StepTransition] = [transition]
        if decision == ReviewDecision.APPROVED:
            follow_ups, job_status = activate_next_step(siblings, step)
            transitions.extend(follow_ups)
        else:
            job_status = job_status_for(project_statuses(siblings, transitions).values())

        review = Review(
            upload_id=upload.id,
            manager_id=caller.user_id,
            decision=decision,
            feedback=feedback,
        )
        self._commit(
            WorkflowChange(
                job_id=job.id,
                expected_version=job.version,
                job_status=job_status,
                transitions=transitions,
                review=review,
            )
        )
        for t in transitions:
            logger.info("Step %s of job %s: %s -> %s", t.step_id, job.id, t.expected, t.target)
        if job_status == JobStatus.COMPLETED:
            logger.info("Job %s completed", job.id)
        return review

    # ---- deletes ----

    def delete_job(self, caller: Caller, job_id: str) -> None:
        job = self._job(job_id)
        require_job_manager(caller, job, "delete job")
        self._store.delete_job(job.id)
        logger.info("Deleted job %s", job.id)

    def delete_step(self, caller: Caller, step_id: str) -> None:
        """Delete a step and re-open the job if nothing is left active.

        The step row, the follow-up activation and the job status are one
        change; the step's uploads and reviews are purged afterwards.
        """
        job, step, siblings = self._snapshot(step_id)
        require_job_manager(caller, job, "delete step")
        remaining = [s for s in siblings if s.id != step.id]
        if not remaining:
            raise ValidationError(
                f"Step {step.id} is the only step of job {job.id}; delete the job instead"
            )

        transitions = reconcile(remaining)
        self._commit(
            WorkflowChange(
                job_id=job.id,
                expected_version=job.version,
                job_status=job_status_for(project_statuses(remaining, transitions).values()),
                transitions=transitions,
                deleted_step_id=step.id,
            )
        )
        self._store.delete_step(step.id)
        logger.info("Deleted step %s of job %s", step.id, job.id)

    # ---- reads ----

    def get_job(self, caller: Caller, job_id: str) -> JobWithSteps:
        job = self._job(job_id)
        require_job_reader(caller, job)
        return self._load_view(job)

    def get_upload(self, caller: Caller, upload_id: str) -> Upload:
        """An upload, visible to whoever may read its job."""
        upload = self._upload(upload_id)
        job = self._job(self._step(upload.step_id).job_id)
        require_job_reader(caller, job)
        return upload

    def list_jobs(self, caller: Caller) -> list[JobWithSteps]:
        """All jobs for managers, assigned jobs for workers; newest first."""
        if caller.can_read_all_jobs:
            jobs = self._store.list_jobs()
        else:
            jobs = self._store.list_jobs(worker_id=caller.user_id)
        jobs.sort(key=lambda j: j.created_at, reverse=True)
        return [self._load_view(job) for job in jobs]

    def get_current_step(self, caller: Caller) -> Optional[CurrentStep]:
        """First unapproved step of the worker's oldest unfinished job."""
        require_role(caller, "view current step", Role.WORKER)
        jobs = sorted(self._store.list_jobs(worker_id=caller.user_id), key=lambda j: j.created_at)
        for job in jobs:
            view = self._load_view(job)
            if view.status == JobStatus.COMPLETED:
                continue
            step = current_step(view.steps)
            if step is not None:
                return CurrentStep(job=view.model_dump(include=set(Job.model_fields)), step=step)
        return None

    def _load_view(self, job: Job) -> JobWithSteps:
        steps = self._store.list_steps(job.id)
        derived = compute_job_status(steps)
        if derived != job.status:
            logger.warning(
                "Job %s stored status %s diverged from derived %s; repairing",
                job.id, job.status, derived,
            )
            try:
                self._store.apply_change(
                    WorkflowChange(job_id=job.id, expected_version=job.version, job_status=derived)
                )
            except ConcurrentUpdateError as exc:
                logger.info("Skipped repair of job %s, it changed meanwhile: %s", job.id, exc.detail)
            else:
                job = job.model_copy(update={"version": job.version + 1})
            job = job.model_copy(update={"status": derived})
        dupes = duplicate_orders(steps)
        if dupes:
            logger.warning("Job %s has duplicate step orders %s", job.id, dupes)
        return self._build_view(job, steps)

    def _build_view(self, job: Job, steps: Sequence[Step]) -> JobWithSteps:
        step_views: list[StepWithUploads] = []
        for step in order_steps(steps):
            uploads = [
                UploadWithReviews(**u.model_dump(), reviews=self._store.list_reviews(u.id))
                for u in self._store.list_uploads(step.id)
            ]
            step_views.append(
                StepWithUploads(
                    **step.model_dump(),
                    uploads=uploads,
                    display_status=state_machine.display_status(step, uploads),
                    latest_feedback=state_machine.latest_feedback(uploads),
                )
            )
        active = active_step(steps)
        return JobWithSteps(
            **job.model_dump(),
            steps=step_views,
            active_step_id=active.id if active else None,
            approved_steps=sum(1 for s in steps if s.status == StepStatus.APPROVED),
            total_steps=len(steps),
        )
