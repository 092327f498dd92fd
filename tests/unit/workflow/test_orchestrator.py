"""Tests for WorkflowOrchestrator against the in-memory store."""

from __future__ import annotations

import logging

import pytest

from stepflow.core.config import AppSettings, WorkflowConfig
from stepflow.core.exceptions import (
    ForbiddenError,
    IdempotencyConflictError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from stepflow.models.changes import WorkflowChange
from stepflow.models.entities import JobStatus, ReviewDecision, StepDraft, StepStatus
from stepflow.workflow.aggregation import active_count, compute_job_status
from stepflow.workflow.orchestrator import WorkflowOrchestrator
from tests.conftest import photo


def _statuses(orchestrator, manager, job_id):
    view = orchestrator.get_job(manager, job_id)
    return [s.status for s in view.steps], view.status


def _assert_consistent(store, job_id):
    steps = store.list_steps(job_id)
    assert store.get_job(job_id).status == compute_job_status(steps)
    assert active_count(steps) <= 1


class TestCreateJob:
    def test_first_step_active_rest_pending(self, make_job):
        job = make_job(3)
        assert [s.status for s in job.steps] == [
            StepStatus.AWAITING_UPLOAD, StepStatus.PENDING, StepStatus.PENDING,
        ]
        assert [s.order for s in job.steps] == [1, 2, 3]
        assert job.status == JobStatus.IN_PROGRESS
        assert job.active_step_id == job.steps[0].id
        assert (job.approved_steps, job.total_steps) == (0, 3)

    def test_persists_job_and_steps(self, make_job, store):
        job = make_job(2)
        assert store.get_job(job.id).manager_id == "manager-1"
        assert [s.title for s in store.list_steps(job.id)] == ["A", "B"]

    def test_worker_cannot_create(self, orchestrator, worker):
        with pytest.raises(ForbiddenError):
            orchestrator.create_job(worker, title="t", worker_id="worker-1", steps=[StepDraft(title="A")])

    def test_view_only_manager_cannot_create(self, orchestrator, viewer):
        with pytest.raises(ForbiddenError):
            orchestrator.create_job(viewer, title="t", worker_id="worker-1", steps=[StepDraft(title="A")])

    def test_requires_steps(self, orchestrator, manager, store):
        with pytest.raises(ValidationError):
            orchestrator.create_job(manager, title="t", worker_id="worker-1", steps=[])
        assert store.list_jobs() == []

    def test_requires_title(self, orchestrator, manager):
        with pytest.raises(ValidationError):
            orchestrator.create_job(manager, title="  ", worker_id="worker-1", steps=[StepDraft(title="A")])

    def test_requires_step_titles(self, orchestrator, manager):
        with pytest.raises(ValidationError, match="Step 2"):
            orchestrator.create_job(
                manager, title="t", worker_id="worker-1",
                steps=[StepDraft(title="A"), StepDraft(title=" ")],
            )

    def test_step_limit(self, store, cache, manager):
        settings = AppSettings(workflow=WorkflowConfig(max_steps_per_job=2))
        orchestrator = WorkflowOrchestrator(store=store, cache=cache, settings=settings)
        with pytest.raises(ValidationError, match="at most 2"):
            orchestrator.create_job(
                manager, title="t", worker_id="worker-1",
                steps=[StepDraft(title=t) for t in "ABC"],
            )

    def test_unknown_worker(self, orchestrator, manager):
        with pytest.raises(NotFoundError):
            orchestrator.create_job(manager, title="t", worker_id="ghost", steps=[StepDraft(title="A")])

    def test_assignee_must_be_a_worker(self, orchestrator, manager):
        with pytest.raises(ValidationError):
            orchestrator.create_job(manager, title="t", worker_id="manager-2", steps=[StepDraft(title="A")])


class TestSubmitUpload:
    def test_moves_step_to_review(self, orchestrator, make_job, worker, manager, store):
        job = make_job(2)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        assert upload.sequence == 1
        assert upload.worker_id == "worker-1"
        statuses, job_status = _statuses(orchestrator, manager, job.id)
        assert statuses == [StepStatus.AWAITING_REVIEW, StepStatus.PENDING]
        assert job_status == JobStatus.AWAITING_REVIEW
        _assert_consistent(store, job.id)

    def test_pending_step_refused_without_upload_row(self, orchestrator, make_job, worker, store):
        job = make_job(2)
        locked = job.steps[1]
        with pytest.raises(InvalidStateError) as exc_info:
            orchestrator.submit_upload(worker, locked.id, photo())
        assert exc_info.value.step_id == locked.id
        assert store.list_uploads(locked.id) == []

    def test_second_upload_while_awaiting_review_refused(self, orchestrator, make_job, worker, store):
        job = make_job(1)
        step_id = job.steps[0].id
        orchestrator.submit_upload(worker, step_id, photo())
        with pytest.raises(InvalidStateError):
            orchestrator.submit_upload(worker, step_id, photo("again.jpg"))
        assert len(store.list_uploads(step_id)) == 1

    def test_approved_step_refused(self, orchestrator, make_job, worker, manager, store):
        job = make_job(2)
        step_id = job.steps[0].id
        upload = orchestrator.submit_upload(worker, step_id, photo())
        orchestrator.submit_review(manager, upload.id, "approved")
        with pytest.raises(InvalidStateError):
            orchestrator.submit_upload(worker, step_id, photo("late.jpg"))
        assert len(store.list_uploads(step_id)) == 1

    def test_only_assigned_worker(self, orchestrator, make_job, other_worker, manager):
        job = make_job(1)
        with pytest.raises(ForbiddenError):
            orchestrator.submit_upload(other_worker, job.steps[0].id, photo())
        with pytest.raises(ForbiddenError):
            orchestrator.submit_upload(manager, job.steps[0].id, photo())

    def test_unknown_step(self, orchestrator, worker):
        with pytest.raises(NotFoundError):
            orchestrator.submit_upload(worker, "missing", photo())

    @pytest.mark.parametrize(
        "meta",
        [
            photo(mime_type="application/pdf"),
            photo(size=0),
            photo(size=11 * 1024 * 1024),
        ],
        ids=["mime", "empty", "too-large"],
    )
    def test_file_policy(self, orchestrator, make_job, worker, store, meta):
        job = make_job(1)
        with pytest.raises(ValidationError):
            orchestrator.submit_upload(worker, job.steps[0].id, meta)
        assert store.list_uploads(job.steps[0].id) == []

    def test_png_accepted(self, orchestrator, make_job, worker):
        job = make_job(1)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo("a.png", "image/png"))
        assert upload.mime_type == "image/png"


class TestSubmitReview:
    def test_approve_unlocks_next_step(self, orchestrator, make_job, worker, manager, store):
        job = make_job(3)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        review = orchestrator.submit_review(manager, upload.id, ReviewDecision.APPROVED)
        assert review.decision == ReviewDecision.APPROVED
        statuses, job_status = _statuses(orchestrator, manager, job.id)
        assert statuses == [StepStatus.APPROVED, StepStatus.AWAITING_UPLOAD, StepStatus.PENDING]
        assert job_status == JobStatus.IN_PROGRESS
        _assert_consistent(store, job.id)

    def test_reject_returns_step_to_worker(self, orchestrator, make_job, worker, manager, store):
        job = make_job(2)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        review = orchestrator.submit_review(manager, upload.id, "rejected", "  too dark ")
        assert review.feedback == "too dark"
        view = orchestrator.get_job(manager, job.id)
        step = view.steps[0]
        assert step.status == StepStatus.AWAITING_UPLOAD
        assert step.display_status == StepStatus.REJECTED
        assert step.latest_feedback == "too dark"
        assert view.status == JobStatus.IN_PROGRESS
        assert view.active_step_id == step.id
        _assert_consistent(store, job.id)

    @pytest.mark.parametrize("feedback", [None, "", "   "])
    def test_reject_requires_feedback(self, orchestrator, make_job, worker, manager, store, feedback):
        job = make_job(1)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        with pytest.raises(ValidationError):
            orchestrator.submit_review(manager, upload.id, "rejected", feedback)
        assert store.list_reviews(upload.id) == []
        assert store.get_step(job.steps[0].id).status == StepStatus.AWAITING_REVIEW

    def test_unknown_decision(self, orchestrator, make_job, worker, manager):
        job = make_job(1)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        with pytest.raises(ValidationError):
            orchestrator.submit_review(manager, upload.id, "maybe")

    def test_only_owning_manager(self, orchestrator, make_job, worker, other_manager, viewer):
        job = make_job(1)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        for caller in (other_manager, viewer, worker):
            with pytest.raises(ForbiddenError):
                orchestrator.submit_review(caller, upload.id, "approved")

    def test_unknown_upload(self, orchestrator, manager):
        with pytest.raises(NotFoundError):
            orchestrator.submit_review(manager, "missing", "approved")

    def test_stale_upload_cannot_be_reviewed(self, orchestrator, make_job, worker, manager):
        job = make_job(1)
        step_id = job.steps[0].id
        first = orchestrator.submit_upload(worker, step_id, photo("1.jpg"))
        orchestrator.submit_review(manager, first.id, "rejected", "blurry")
        orchestrator.submit_upload(worker, step_id, photo("2.jpg"))
        with pytest.raises(InvalidStateError, match="not the latest"):
            orchestrator.submit_review(manager, first.id, "approved")

    def test_last_approval_completes_job(self, orchestrator, make_job, worker, manager, caplog):
        job = make_job(1)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        with caplog.at_level(logging.INFO, logger="stepflow"):
            orchestrator.submit_review(manager, upload.id, "approved")
        view = orchestrator.get_job(manager, job.id)
        assert view.status == JobStatus.COMPLETED
        assert view.active_step_id is None
        assert f"Job {job.id} completed" in caplog.text


class TestScenario:
    def test_three_step_job_end_to_end(self, orchestrator, make_job, worker, manager, store):
        job = make_job(3)
        a, b, c = (s.id for s in job.steps)
        assert job.status == JobStatus.IN_PROGRESS

        up_a = orchestrator.submit_upload(worker, a, photo("a.jpg"))
        assert store.get_step(a).status == StepStatus.AWAITING_REVIEW
        orchestrator.submit_review(manager, up_a.id, "approved")
        assert store.get_step(a).status == StepStatus.APPROVED
        assert store.get_step(b).status == StepStatus.AWAITING_UPLOAD
        assert store.get_job(job.id).status == JobStatus.IN_PROGRESS

        with pytest.raises(InvalidStateError):
            orchestrator.submit_review(manager, up_a.id, "approved")

        up_b1 = orchestrator.submit_upload(worker, b, photo("b1.jpg"))
        assert store.get_step(b).status == StepStatus.AWAITING_REVIEW
        rejection = orchestrator.submit_review(manager, up_b1.id, "rejected", "blurry")
        assert store.get_step(b).status == StepStatus.AWAITING_UPLOAD
        assert store.list_reviews(up_b1.id)[0].feedback == "blurry"
        assert rejection.decision == ReviewDecision.REJECTED

        up_b2 = orchestrator.submit_upload(worker, b, photo("b2.jpg"))
        assert store.get_step(b).status == StepStatus.AWAITING_REVIEW
        assert [u.sequence for u in store.list_uploads(b)] == [1, 2]
        orchestrator.submit_review(manager, up_b2.id, "approved")
        assert store.get_step(b).status == StepStatus.APPROVED
        assert store.get_step(c).status == StepStatus.AWAITING_UPLOAD

        up_c = orchestrator.submit_upload(worker, c, photo("c.jpg"))
        orchestrator.submit_review(manager, up_c.id, "approved")
        assert store.get_step(c).status == StepStatus.APPROVED
        assert store.get_job(job.id).status == JobStatus.COMPLETED
        _assert_consistent(store, job.id)

    def test_reject_then_resubmit_keeps_history(self, orchestrator, make_job, worker, manager, store):
        job = make_job(1)
        step_id = job.steps[0].id
        first = orchestrator.submit_upload(worker, step_id, photo("1.jpg"))
        orchestrator.submit_review(manager, first.id, "rejected", "wrong wall")
        second = orchestrator.submit_upload(worker, step_id, photo("2.jpg"))

        uploads = store.list_uploads(step_id)
        assert [u.id for u in uploads] == [first.id, second.id]
        assert sum(len(store.list_reviews(u.id)) for u in uploads) == 1
        assert store.get_step(step_id).status == StepStatus.AWAITING_REVIEW

        step_view = orchestrator.get_job(manager, job.id).steps[0]
        assert step_view.display_status == StepStatus.AWAITING_REVIEW
        assert [len(u.reviews) for u in step_view.uploads] == [1, 0]


class TestDeletes:
    def test_delete_job_cascades(self, orchestrator, make_job, worker, manager, store):
        job = make_job(2)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        orchestrator.submit_review(manager, upload.id, "rejected", "again")
        orchestrator.delete_job(manager, job.id)

        with pytest.raises(NotFoundError):
            orchestrator.get_job(manager, job.id)
        assert store.list_steps(job.id) == []
        assert store.get_upload(upload.id) is None
        assert store.list_reviews(upload.id) == []

    def test_delete_job_owner_only(self, orchestrator, make_job, other_manager, worker):
        job = make_job(1)
        for caller in (other_manager, worker):
            with pytest.raises(ForbiddenError):
                orchestrator.delete_job(caller, job.id)

    def test_delete_active_step_activates_next(self, orchestrator, make_job, worker, manager, store):
        job = make_job(3)
        a, b, c = (s.id for s in job.steps)
        up = orchestrator.submit_upload(worker, a, photo())
        orchestrator.submit_review(manager, up.id, "approved")

        orchestrator.delete_step(manager, b)
        assert store.get_step(b) is None
        assert store.get_step(c).status == StepStatus.AWAITING_UPLOAD
        _assert_consistent(store, job.id)

    def test_delete_last_open_step_completes_job(self, orchestrator, make_job, worker, manager, store):
        job = make_job(2)
        a, b = (s.id for s in job.steps)
        up = orchestrator.submit_upload(worker, a, photo())
        orchestrator.submit_review(manager, up.id, "approved")

        orchestrator.delete_step(manager, b)
        assert store.get_job(job.id).status == JobStatus.COMPLETED

    def test_cannot_delete_only_step(self, orchestrator, make_job, manager, store):
        job = make_job(1)
        with pytest.raises(ValidationError):
            orchestrator.delete_step(manager, job.steps[0].id)
        assert store.get_step(job.steps[0].id) is not None

    def test_delete_step_removes_uploads(self, orchestrator, make_job, worker, manager, store):
        job = make_job(2)
        up = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        orchestrator.delete_step(manager, job.steps[0].id)
        assert store.get_upload(up.id) is None
        assert store.get_step(job.steps[1].id).status == StepStatus.AWAITING_UPLOAD
        _assert_consistent(store, job.id)


class TestReads:
    def test_worker_sees_only_assigned_jobs(self, orchestrator, make_job, worker, other_worker):
        mine = make_job(1, worker_id="worker-1")
        make_job(1, worker_id="worker-2")
        assert [j.id for j in orchestrator.list_jobs(worker)] == [mine.id]
        with pytest.raises(ForbiddenError):
            orchestrator.get_job(other_worker, mine.id)

    def test_managers_see_all_jobs_newest_first(self, orchestrator, make_job, viewer, other_manager):
        first = make_job(1, title="first")
        second = make_job(1, worker_id="worker-2", title="second")
        for caller in (viewer, other_manager):
            jobs = orchestrator.list_jobs(caller)
            assert {j.id for j in jobs} == {first.id, second.id}
            assert jobs[0].created_at >= jobs[1].created_at

    def test_get_job_repairs_diverged_status(self, orchestrator, make_job, manager, store, caplog):
        job = make_job(2)
        store.apply_change(WorkflowChange(job_id=job.id, job_status=JobStatus.COMPLETED))
        with caplog.at_level(logging.WARNING):
            view = orchestrator.get_job(manager, job.id)
        assert view.status == JobStatus.IN_PROGRESS
        assert store.get_job(job.id).status == JobStatus.IN_PROGRESS
        assert "diverged" in caplog.text

    def test_get_upload_respects_job_readers(self, orchestrator, make_job, worker, other_worker, viewer):
        job = make_job(1)
        upload = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        assert orchestrator.get_upload(viewer, upload.id).id == upload.id
        with pytest.raises(ForbiddenError):
            orchestrator.get_upload(other_worker, upload.id)

    def test_current_step_follows_progress(self, orchestrator, make_job, worker, manager):
        job = make_job(2)
        current = orchestrator.get_current_step(worker)
        assert current.job.id == job.id
        assert current.step.id == job.steps[0].id

        up = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        assert orchestrator.get_current_step(worker).step.status == StepStatus.AWAITING_REVIEW
        orchestrator.submit_review(manager, up.id, "approved")
        assert orchestrator.get_current_step(worker).step.id == job.steps[1].id

    def test_current_step_none_when_all_done(self, orchestrator, make_job, worker, manager):
        job = make_job(1)
        up = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        orchestrator.submit_review(manager, up.id, "approved")
        assert orchestrator.get_current_step(worker) is None

    def test_current_step_workers_only(self, orchestrator, manager):
        with pytest.raises(ForbiddenError):
            orchestrator.get_current_step(manager)


class TestIdempotentSubmissions:
    def test_upload_retry_returns_first_result(self, orchestrator, make_job, worker, store):
        job = make_job(1)
        step_id = job.steps[0].id
        first = orchestrator.submit_upload(worker, step_id, photo(), idempotency_key="req-1")
        retry = orchestrator.submit_upload(worker, step_id, photo(), idempotency_key="req-1")
        assert retry.id == first.id
        assert len(store.list_uploads(step_id)) == 1

    def test_upload_key_reuse_with_other_file(self, orchestrator, make_job, worker):
        job = make_job(1)
        step_id = job.steps[0].id
        orchestrator.submit_upload(worker, step_id, photo("1.jpg"), idempotency_key="req-1")
        with pytest.raises(IdempotencyConflictError):
            orchestrator.submit_upload(worker, step_id, photo("2.jpg"), idempotency_key="req-1")

    def test_review_retry_returns_first_result(self, orchestrator, make_job, worker, manager, store):
        job = make_job(2)
        up = orchestrator.submit_upload(worker, job.steps[0].id, photo())
        first = orchestrator.submit_review(manager, up.id, "approved", idempotency_key="rev-1")
        retry = orchestrator.submit_review(manager, up.id, "approved", idempotency_key="rev-1")
        assert retry.id == first.id
        assert len(store.list_reviews(up.id)) == 1
        assert store.get_step(job.steps[1].id).status == StepStatus.AWAITING_UPLOAD
