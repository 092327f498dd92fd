"""Step endpoints and the worker's current-step lookup."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Response

from stepflow.api.dependencies import CallerDep, OrchestratorDep
from stepflow.models.views import CurrentStep

router = APIRouter(tags=["steps"])


@router.delete("/steps/{step_id}", status_code=204)
def delete_step(step_id: str, caller: CallerDep, orchestrator: OrchestratorDep) -> Response:
    orchestrator.delete_step(caller, step_id)
    return Response(status_code=204)


@router.get("/worker/current-step")
def current_step(caller: CallerDep, orchestrator: OrchestratorDep) -> Optional[CurrentStep]:
    """The step the worker should act on next, or null when nothing is open."""
    return orchestrator.get_current_step(caller)
