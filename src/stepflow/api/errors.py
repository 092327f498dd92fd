"""Map the StepFlow exception hierarchy onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from stepflow.core.exceptions import (
    CacheError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    StepFlowError,
    StorageError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Most specific first; subclasses inherit their parent's status.
STATUS_CODES: list[tuple[type[StepFlowError], int]] = [
    (NotFoundError, 404),
    (ForbiddenError, 403),
    (InvalidStateError, 409),
    (ValidationError, 422),
    (StorageError, 503),
    (CacheError, 503),
]


def status_for(exc: StepFlowError) -> int:
    for exc_type, status in STATUS_CODES:
        if isinstance(exc, exc_type):
            return status
    return 500


async def handle_stepflow_error(request: Request, exc: StepFlowError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        logger.info("%s %s -> %d: %s", request.method, request.url.path, status, exc)
    body = {"error": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, InvalidStateError) and exc.step_id:
        body["step_id"] = exc.step_id
    return JSONResponse(status_code=status, content=body)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StepFlowError, handle_stepflow_error)
