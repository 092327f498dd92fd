"""Health check endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
def ready(request: Request) -> dict[str, str]:
    """Touch the entity store and the cache; backend failures surface as 503."""
    state = request.app.state
    state.store.get_user("__readiness_check__")
    state.cache.get("stepflow:readiness")
    return {"status": "ready", "backend": state.settings.backend}
