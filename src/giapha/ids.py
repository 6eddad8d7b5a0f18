"""Time-ordered identifiers for contributions and audit rows."""
from __future__ import annotations

from uuid import UUID

from uuid_utils import uuid7 as _uuid7


def uuid7() -> UUID:
    """Generate a UUID7 compatible with stdlib UUID."""
    return UUID(str(_uuid7()))


def new_id() -> str:
    return str(uuid7())
