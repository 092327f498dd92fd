"""Document set endpoints: multipart create, list, inspect, download, delete."""

from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, File, Form, Response, UploadFile
from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from stepflow.api.dependencies import CallerDep, DocumentLibraryDep, FileStoreDep
from stepflow.api.routes.uploads import storage_key
from stepflow.core.exceptions import StepFlowError, ValidationError
from stepflow.models.entities import DocumentDraft, FileMeta
from stepflow.models.views import DocumentSetWithDocuments

logger = logging.getLogger(__name__)

router = APIRouter(tags=["document-sets"])

_drafts = TypeAdapter(list[DocumentDraft])


def parse_details(raw: Optional[str]) -> list[DocumentDraft]:
    """Per-file titles and descriptions, sent as a JSON list in a form field."""
    if not raw:
        return []
    try:
        return _drafts.validate_json(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Malformed document details: {exc.error_count()} errors") from exc


@router.post("", status_code=201)
def create_document_set(
    caller: CallerDep,
    library: DocumentLibraryDep,
    file_store: FileStoreDep,
    title: Annotated[str, Form()],
    documents: Annotated[list[UploadFile], File()],
    description: Annotated[str, Form()] = "",
    details: Annotated[Optional[str], Form()] = None,
) -> DocumentSetWithDocuments:
    drafts = parse_details(details)
    files: list[FileMeta] = []
    try:
        for document in documents:
            data = document.file.read()
            original_name = document.filename or ""
            mime_type = document.content_type or "application/octet-stream"
            key = storage_key(original_name, prefix="documents")
            file_store.write(key, data, content_type=mime_type)
            files.append(FileMeta(
                filename=key, original_name=original_name, mime_type=mime_type, size=len(data),
            ))
        return library.create_document_set(
            caller, title=title, description=description, files=files, details=drafts,
        )
    except StepFlowError:
        for file in files:
            file_store.delete(file.filename)
        logger.info("Removed %d stored documents after the set was refused", len(files))
        raise


@router.get("")
def list_document_sets(caller: CallerDep, library: DocumentLibraryDep) -> list[DocumentSetWithDocuments]:
    return library.list_document_sets(caller)


@router.get("/{set_id}")
def get_document_set(set_id: str, caller: CallerDep, library: DocumentLibraryDep) -> DocumentSetWithDocuments:
    return library.get_document_set(caller, set_id)


@router.get("/{set_id}/documents/{document_id}/file")
def get_document_file(
    set_id: str,
    document_id: str,
    caller: CallerDep,
    library: DocumentLibraryDep,
    file_store: FileStoreDep,
) -> Response:
    document = library.get_document(caller, set_id, document_id)
    return Response(content=file_store.read(document.filename), media_type=document.mime_type)


@router.delete("/{set_id}", status_code=204)
def delete_document_set(
    set_id: str,
    caller: CallerDep,
    library: DocumentLibraryDep,
    file_store: FileStoreDep,
) -> Response:
    for document in library.delete_document_set(caller, set_id):
        file_store.delete(document.filename)
    return Response(status_code=204)
