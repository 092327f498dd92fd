"""User directory endpoints."""

from __future__ import annotations

from fastapi import APIRouter

from stepflow.api.dependencies import CallerDep, DirectoryDep
from stepflow.api.schemas import RoleUpdateRequest
from stepflow.models.entities import User

router = APIRouter(tags=["users"])


@router.get("/users")
def list_users(caller: CallerDep, directory: DirectoryDep) -> list[User]:
    return directory.list_users(caller)


@router.get("/workers")
def list_workers(caller: CallerDep, directory: DirectoryDep) -> list[User]:
    return directory.list_workers(caller)


@router.patch("/users/{user_id}/role")
def update_role(
    user_id: str, body: RoleUpdateRequest, caller: CallerDep, directory: DirectoryDep
) -> User:
    return directory.update_role(caller, user_id, body.role)
