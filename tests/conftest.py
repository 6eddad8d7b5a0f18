from __future__ import annotations

import json
from typing import Any

import pytest

from giapha.caller import Caller, Role
from giapha.config import RegistryConfig
from giapha.db import Database
from giapha.registry import FamilyRegistry


@pytest.fixture()
def registry():
    reg = FamilyRegistry(Database(":memory:"), RegistryConfig(db_path=":memory:"))
    try:
        yield reg
    finally:
        reg.close()


@pytest.fixture()
def admin() -> Caller:
    return Caller(user_id="u-admin", role=Role.ADMIN, email="admin@giapha.test")


@pytest.fixture()
def editor() -> Caller:
    return Caller(user_id="u-editor", role=Role.EDITOR, email="editor@giapha.test")


@pytest.fixture()
def member() -> Caller:
    return Caller(user_id="u-member", role=Role.MEMBER, email="member@giapha.test")


@pytest.fixture()
def seeded(registry: FamilyRegistry, admin: Caller) -> FamilyRegistry:
    """Two generations.

    F001: P001 (father) + P002 (mother) -> P003, P004, P005
    F002: P003 (father) + P006 (mother) -> no children
    """
    people = [
        {"display_name": "Nguyễn Văn An", "gender": "male", "generation": 1},
        {"display_name": "Trần Thị Bình", "gender": "female", "generation": 1},
        {"display_name": "Nguyễn Văn Cường", "gender": "male", "generation": 2},
        {"display_name": "Nguyễn Thị Dung", "gender": "female", "generation": 2},
        {"display_name": "Nguyễn Văn Em", "gender": "male", "generation": 2},
        {"display_name": "Lê Thị Gấm", "gender": "female", "generation": 2},
    ]
    for fields in people:
        registry.create_person(admin, fields)
    registry.add_family(admin, father_handle="P001", mother_handle="P002", children=["P003", "P004", "P005"])
    registry.add_family(admin, father_handle="P003", mother_handle="P006")
    return registry


def approved(registry: FamilyRegistry, author: Caller, reviewer: Caller, kind: str, payload: Any, **context: Any) -> str:
    """Submit a contribution and approve it without applying; returns its id."""
    new_value = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
    contribution = registry.submit(author, kind, new_value, **context)
    registry.review.approve(contribution.id, reviewer)
    return contribution.id


@pytest.fixture()
def make_approved(registry: FamilyRegistry, member: Caller, admin: Caller):
    def _make(kind: str, payload: Any, **context: Any) -> str:
        return approved(registry, member, admin, kind, payload, **context)

    return _make
