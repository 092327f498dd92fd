"""Request-scoped dependencies: backends from app state and the caller."""

from __future__ import annotations

from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request

from stepflow.core.exceptions import NotFoundError
from stepflow.core.protocols import IFileStore
from stepflow.workflow.authorization import Caller
from stepflow.workflow.documents import DocumentLibrary
from stepflow.workflow.orchestrator import WorkflowOrchestrator
from stepflow.workflow.users import UserDirectory


def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    return request.app.state.orchestrator


def get_directory(request: Request) -> UserDirectory:
    return request.app.state.directory


def get_document_library(request: Request) -> DocumentLibrary:
    return request.app.state.documents


def get_file_store(request: Request) -> IFileStore:
    return request.app.state.file_store


def get_caller(
    directory: Annotated[UserDirectory, Depends(get_directory)],
    x_user_id: Annotated[Optional[str], Header()] = None,
) -> Caller:
    """Resolve ``X-User-Id`` to a Caller; unknown or missing ids are 401."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    try:
        return directory.resolve_caller(x_user_id)
    except NotFoundError:
        raise HTTPException(status_code=401, detail=f"Unknown user {x_user_id!r}") from None


CallerDep = Annotated[Caller, Depends(get_caller)]
OrchestratorDep = Annotated[WorkflowOrchestrator, Depends(get_orchestrator)]
DirectoryDep = Annotated[UserDirectory, Depends(get_directory)]
FileStoreDep = Annotated[IFileStore, Depends(get_file_store)]
DocumentLibraryDep = Annotated[DocumentLibrary, Depends(get_document_library)]
