"""Job endpoints: create, list, inspect, delete."""

from __future__ import annotations

from fastapi import APIRouter, Response

from stepflow.api.dependencies import CallerDep, OrchestratorDep
from stepflow.api.schemas import CreateJobRequest
from stepflow.models.views import JobWithSteps

router = APIRouter(tags=["jobs"])


@router.post("", status_code=201)
def create_job(body: CreateJobRequest, caller: CallerDep, orchestrator: OrchestratorDep) -> JobWithSteps:
    return orchestrator.create_job(
        caller,
        title=body.title,
        worker_id=body.worker_id,
        steps=body.steps,
        description=body.description,
        deadline=body.deadline,
    )


@router.get("")
def list_jobs(caller: CallerDep, orchestrator: OrchestratorDep) -> list[JobWithSteps]:
    return orchestrator.list_jobs(caller)


@router.get("/{job_id}")
def get_job(job_id: str, caller: CallerDep, orchestrator: OrchestratorDep) -> JobWithSteps:
    return orchestrator.get_job(caller, job_id)


@router.delete("/{job_id}", status_code=204)
def delete_job(job_id: str, caller: CallerDep, orchestrator: OrchestratorDep) -> Response:
    orchestrator.delete_job(caller, job_id)
    return Response(status_code=204)
