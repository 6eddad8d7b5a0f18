"""FamilyRegistry: one object wiring storage, graph, moderation and audit.

Direct edits made through the registry (the "add member" and tree editor
flows) go through the same LinkMaintainer as the apply pipeline and append a
CREATE, UPDATE or DELETE audit row inside the same transaction as the edit.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import structlog

from .audit import AuditAction, AuditLog
from .caller import Caller
from .community import CommunityStore
from .config import CONFIG, RegistryConfig
from .contributions import (
    ApplyEngine,
    ApplyResult,
    Contribution,
    ContributionQueue,
    ContributionStatus,
    ReviewWorkflow,
)
from .db import Database
from .graph import Family, GraphStore, HandleGenerator, LinkMaintainer, NewPerson, Person, SpouseRole

logger = structlog.get_logger(__name__)


class FamilyRegistry:
    """Facade over every component of a family registry database."""

    def __init__(self, db: Database, config: RegistryConfig | None = None) -> None:
        self.config = config or CONFIG
        self.db = db
        self.store = GraphStore(db, HandleGenerator(width=self.config.handle_width))
        self.links = LinkMaintainer(self.store)
        self.queue = ContributionQueue(db)
        self.audit = AuditLog(db)
        self.community = CommunityStore(db)
        self.review = ReviewWorkflow(self.queue, self.audit)
        self.engine = ApplyEngine(self.links, self.queue, self.community, self.audit, self.config)

    @classmethod
    def open(cls, db_path: Path | str | None = None, config: RegistryConfig | None = None) -> FamilyRegistry:
        """Open (creating if needed) the registry database at ``db_path``."""
        config = config or CONFIG
        db = Database(db_path or config.db_path, busy_timeout_ms=config.busy_timeout_ms)
        logger.debug("registry.opened", db_path=db.db_path)
        return cls(db, config)

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> FamilyRegistry:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.close()
        return False

    def _record(
        self,
        caller: Caller,
        action: AuditAction,
        entity_type: str,
        entity_id: str,
        entity_name: str | None = None,
        **metadata: Any,
    ) -> None:
        self.audit.append(
            actor_id=caller.user_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            metadata=metadata,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def get_person(self, handle: str) -> Person | None:
        return self.store.get_person(handle)

    def get_family(self, handle: str) -> Family | None:
        return self.store.get_family(handle)

    def list_people(self) -> list[Person]:
        return self.store.list_people()

    def list_families(self) -> list[Family]:
        return self.store.list_families()

    def check(self) -> list[str]:
        """Invariant violations in the stored graph (empty when consistent)."""
        return self.links.verify_integrity()

    # =========================================================================
    # Direct edits
    # =========================================================================

    def create_person(self, caller: Caller, fields: NewPerson | dict[str, Any]) -> Person:
        with self.db.transaction():
            person = self.links.create_person(caller, fields)
            self._record(caller, AuditAction.CREATE, "person", person.handle, person.display_name)
        return person

    def add_family(
        self,
        caller: Caller,
        *,
        father_handle: str | None = None,
        mother_handle: str | None = None,
        children: list[str] | None = None,
    ) -> Family:
        with self.db.transaction():
            family = self.links.add_family(
                caller,
                father_handle=father_handle,
                mother_handle=mother_handle,
                children=children,
            )
            self._record(
                caller,
                AuditAction.CREATE,
                "family",
                family.handle,
                fatherHandle=family.father_handle,
                motherHandle=family.mother_handle,
                children=family.children or None,
            )
        return family

    def delete_person(self, caller: Caller, handle: str) -> None:
        with self.db.transaction():
            caller.require_edit("delete_person")
            person = self.store.require_person(handle)
            self.links.delete_person(caller, handle)
            self._record(caller, AuditAction.DELETE, "person", handle, person.display_name)

    def update_person_fields(self, caller: Caller, handle: str, values: dict[str, Any]) -> Person:
        with self.db.transaction():
            person = self.links.update_person_fields(caller, handle, values)
            self._record(
                caller,
                AuditAction.UPDATE,
                "person",
                handle,
                person.display_name,
                fields=sorted(values),
            )
        return person

    def add_child_to_family(self, caller: Caller, person_handle: str, family_handle: str) -> None:
        with self.db.transaction():
            self.links.add_child_to_family(caller, person_handle, family_handle)
            self._record(
                caller, AuditAction.UPDATE, "family", family_handle,
                change="add_child", personHandle=person_handle,
            )

    def remove_child_from_family(self, caller: Caller, person_handle: str, family_handle: str) -> None:
        with self.db.transaction():
            self.links.remove_child_from_family(caller, person_handle, family_handle)
            self._record(
                caller, AuditAction.UPDATE, "family", family_handle,
                change="remove_child", personHandle=person_handle,
            )

    def move_child_to_family(
        self,
        caller: Caller,
        child_handle: str,
        from_family_handle: str,
        to_family_handle: str,
    ) -> None:
        with self.db.transaction():
            self.links.move_child_to_family(caller, child_handle, from_family_handle, to_family_handle)
            self._record(
                caller, AuditAction.UPDATE, "person", child_handle,
                change="move_child", fromFamily=from_family_handle, toFamily=to_family_handle,
            )

    def reorder_children(self, caller: Caller, family_handle: str, children: list[str]) -> Family:
        with self.db.transaction():
            family = self.links.reorder_children(caller, family_handle, children)
            self._record(
                caller, AuditAction.UPDATE, "family", family_handle,
                change="reorder_children", children=family.children,
            )
        return family

    def add_spouse_to_family(
        self,
        caller: Caller,
        person_handle: str,
        family_handle: str,
        role: SpouseRole | str,
    ) -> None:
        role = SpouseRole(role)
        with self.db.transaction():
            self.links.add_spouse_to_family(caller, person_handle, family_handle, role)
            self._record(
                caller, AuditAction.UPDATE, "family", family_handle,
                change="add_spouse", personHandle=person_handle, role=role.value,
            )

    def remove_spouse_from_family(
        self,
        caller: Caller,
        person_handle: str,
        family_handle: str,
        role: SpouseRole | str,
    ) -> None:
        role = SpouseRole(role)
        with self.db.transaction():
            self.links.remove_spouse_from_family(caller, person_handle, family_handle, role)
            self._record(
                caller, AuditAction.UPDATE, "family", family_handle,
                change="remove_spouse", personHandle=person_handle, role=role.value,
            )

    # =========================================================================
    # Contributions
    # =========================================================================

    def submit(self, author: Caller, field_name: str, new_value: str, **context: Any) -> Contribution:
        return self.queue.submit(author, field_name, new_value, **context)

    def decide(
        self,
        contribution_id: str,
        decision: ContributionStatus | str,
        reviewer: Caller,
        admin_note: str | None = None,
    ) -> Contribution:
        return self.review.decide(contribution_id, decision, reviewer, admin_note)

    def apply(self, contribution_id: str, caller: Caller) -> ApplyResult:
        return self.engine.apply(contribution_id, caller)

    def approve_and_apply(
        self,
        contribution_id: str,
        reviewer: Caller,
        admin_note: str | None = None,
    ) -> ApplyResult:
        """Approve a pending contribution and apply it right away."""
        self.review.approve(contribution_id, reviewer, admin_note)
        return self.engine.apply(contribution_id, reviewer)
