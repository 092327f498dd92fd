"""Photo upload endpoints.

Bytes go to the file store under an opaque key first; the orchestrator then
records the upload. When the orchestrator refuses, the stored bytes are
removed again.
"""

from __future__ import annotations

import logging
from pathlib import PurePath
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, Header, Response, UploadFile

from stepflow.api.dependencies import CallerDep, FileStoreDep, OrchestratorDep
from stepflow.core.exceptions import StepFlowError
from stepflow.models.entities import FileMeta, Upload, new_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["uploads"])


def storage_key(original_name: str, prefix: str = "step-photos") -> str:
    """Opaque object key that keeps the original extension."""
    suffix = PurePath(original_name).suffix.lower()
    return f"{prefix}/{new_id()}{suffix}"


@router.post("", status_code=201)
def submit_upload(
    caller: CallerDep,
    orchestrator: OrchestratorDep,
    file_store: FileStoreDep,
    step_id: Annotated[str, Form()],
    photo: Annotated[UploadFile, File()],
    idempotency_key: Annotated[Optional[str], Header()] = None,
) -> Upload:
    data = photo.file.read()
    original_name = photo.filename or ""
    mime_type = photo.content_type or "application/octet-stream"
    key = storage_key(original_name)
    meta = FileMeta(filename=key, original_name=original_name, mime_type=mime_type, size=len(data))

    file_store.write(key, data, content_type=mime_type)
    try:
        upload = orchestrator.submit_upload(
            caller, step_id, meta, idempotency_key=idempotency_key,
        )
    except StepFlowError:
        file_store.delete(key)
        logger.info("Removed stored photo %s after the upload was refused", key)
        raise
    if upload.filename != key:
        # Replayed request: the first attempt's bytes are the ones on record.
        file_store.delete(key)
    return upload


@router.get("/{upload_id}/photo")
def get_photo(
    upload_id: str,
    caller: CallerDep,
    orchestrator: OrchestratorDep,
    file_store: FileStoreDep,
) -> Response:
    upload = orchestrator.get_upload(caller, upload_id)
    return Response(content=file_store.read(upload.filename), media_type=upload.mime_type)
