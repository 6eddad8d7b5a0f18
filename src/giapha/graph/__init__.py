"""Genealogical graph: persons, families and the links between them."""
from __future__ import annotations

from giapha.graph.handles import FAMILY_PREFIX, PERSON_PREFIX, HandleGenerator
from giapha.graph.links import LinkMaintainer, coerce_column_value
from giapha.graph.models import (
    EDITABLE_PERSON_COLUMNS,
    Family,
    Gender,
    NewPerson,
    Person,
    SpouseRole,
)
from giapha.graph.store import GraphStore

__all__ = [
    "EDITABLE_PERSON_COLUMNS",
    "FAMILY_PREFIX",
    "Family",
    "Gender",
    "GraphStore",
    "HandleGenerator",
    "LinkMaintainer",
    "NewPerson",
    "PERSON_PREFIX",
    "Person",
    "SpouseRole",
    "coerce_column_value",
]
