"""Explicit caller identity and capability.

Role resolution (sessions, tokens, profiles) happens outside this package;
callers arrive here already resolved and are passed to every mutating
operation.
"""
from __future__ import annotations

from enum import Enum

from pydantic import BaseModel

from .exceptions import PermissionDeniedError


class Role(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    MEMBER = "member"


PRIVILEGED_ROLES = frozenset({Role.ADMIN, Role.EDITOR})


class Caller(BaseModel):
    """The resolved identity performing an operation."""
    user_id: str
    role: Role = Role.MEMBER
    email: str | None = None

    @property
    def can_edit(self) -> bool:
        return self.role in PRIVILEGED_ROLES

    def require_edit(self, operation: str) -> None:
        """Raise PermissionDeniedError unless the caller may mutate the graph."""
        if not self.can_edit:
            raise PermissionDeniedError(
                f"{operation} requires an admin or editor role",
                role=self.role.value,
            )
