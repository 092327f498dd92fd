"""Resolve callers and manage user roles."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from stepflow.core.exceptions import NotFoundError, ValidationError
from stepflow.core.protocols import IEntityStore
from stepflow.models.entities import Role, User
from stepflow.workflow.authorization import Caller, require_role

logger = logging.getLogger(__name__)


def read_seed_users(path: str | Path) -> list[User]:
    """Parse a JSON list of user records, e.g. ``config/seed_users.json``."""
    raw = json.loads(Path(path).read_text())
    if not isinstance(raw, list):
        raise ValidationError(f"Seed file {path} must contain a JSON list of users")
    return [User.model_validate(entry) for entry in raw]


class UserDirectory:
    def __init__(self, store: IEntityStore) -> None:
        self._store = store

    def register(self, user: User) -> User:
        """Insert or update a user record."""
        return self._store.put_user(user)

    def register_all(self, users: list[User]) -> int:
        for user in users:
            self.register(user)
        logger.info("Registered %d users", len(users))
        return len(users)

    def resolve_caller(self, user_id: str) -> Caller:
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)
        return Caller(user_id=user.id, role=user.role)

    def list_users(self, caller: Caller) -> list[User]:
        require_role(caller, "list users", Role.MANAGER, Role.MANAGER_VIEW_ONLY)
        return self._store.list_users()

    def list_workers(self, caller: Caller) -> list[User]:
        require_role(caller, "list workers", Role.MANAGER, Role.MANAGER_VIEW_ONLY)
        return [u for u in self._store.list_users() if u.role == Role.WORKER]

    def update_role(self, caller: Caller, user_id: str, role: Role | str) -> User:
        require_role(caller, "update user roles", Role.MANAGER)
        try:
            role = Role(role)
        except ValueError:
            raise ValidationError(f"Invalid role {role!r}") from None
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFoundError("User", user_id)

        self._store.update_user_role(user_id, role)
        logger.info("User %s role set to %s by %s", user_id, role, caller.user_id)
        return user.model_copy(update={"role": role})
