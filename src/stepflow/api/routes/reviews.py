"""Review endpoint: approve or reject an upload."""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import APIRouter, Header

from stepflow.api.dependencies import CallerDep, OrchestratorDep
from stepflow.api.schemas import ReviewRequest
from stepflow.models.entities import Review

router = APIRouter(tags=["reviews"])


@router.post("", status_code=201)
def submit_review(
    body: ReviewRequest,
    caller: CallerDep,
    orchestrator: OrchestratorDep,
    idempotency_key: Annotated[Optional[str], Header()] = None,
) -> Review:
    return orchestrator.submit_review(
        caller,
        body.upload_id,
        body.decision,
        body.feedback,
        idempotency_key=idempotency_key,
    )
