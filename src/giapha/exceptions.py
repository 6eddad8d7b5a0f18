"""Error taxonomy for graph mutations and the apply pipeline.

Every error carries a short ``code`` label. Validation and integrity errors
are meant to be shown to the reviewer verbatim; permission and persistence
errors are reported by category only.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar


@dataclass
class RegistryError(Exception):
    """Base class for all registry errors."""

    message: str
    code: ClassVar[str] = "internal"

    def __str__(self) -> str:
        return self.message


@dataclass
class ValidationError(RegistryError):
    """A payload or field value is missing or malformed."""

    field: str | None = None
    code: ClassVar[str] = "validation"


@dataclass
class NotFoundOrSkip(RegistryError):
    """The target record does not exist or is not in an applicable state."""

    code: ClassVar[str] = "not_found"


@dataclass
class NotFoundOrForbidden(NotFoundOrSkip):
    """A verified write affected zero rows."""

    table: str | None = None
    key: str | None = None


@dataclass
class ReferentialIntegrityError(RegistryError):
    """A person is still linked from one or more families."""

    handle: str = ""
    blocking_families: list[str] = field(default_factory=list)
    code: ClassVar[str] = "integrity"

    @property
    def link_count(self) -> int:
        return len(self.blocking_families)


@dataclass
class PermissionDeniedError(RegistryError):
    """The caller lacks the capability required for the operation."""

    role: str | None = None
    code: ClassVar[str] = "permission"


@dataclass
class PersistenceError(RegistryError):
    """The underlying storage write failed."""

    code: ClassVar[str] = "persistence"
