"""Bidirectional link maintenance between persons and families.

Every public mutation here:
- checks the caller's capability before reading or writing anything,
- runs in a single database transaction, so both sides of a link are written
  or neither is,
- leaves the graph satisfying:
    f in p.parent_families  <=>  p in f.children
    f in p.families         <=>  p is f.father_handle or f.mother_handle
    families only reference persons that exist
"""
from __future__ import annotations

from datetime import date, datetime
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..caller import Caller
from ..db import Database
from ..exceptions import ReferentialIntegrityError, ValidationError
from .models import EDITABLE_PERSON_COLUMNS, Family, NewPerson, Person, SpouseRole
from .store import GraphStore

logger = structlog.get_logger(__name__)


_TRUE_STRINGS = frozenset({"true", "1", "yes"})
_FALSE_STRINGS = frozenset({"false", "0", "no"})


def coerce_column_value(column: str, raw: Any) -> Any:
    """Convert a submitted value to the type stored in ``column``.

    Raises ValidationError for columns outside the allow-list and for values
    that cannot be converted; nothing is silently defaulted.
    """
    kind = EDITABLE_PERSON_COLUMNS.get(column)
    if kind is None:
        raise ValidationError(f'Field "{column}" cannot be edited', field=column)

    if kind == "bool":
        if isinstance(raw, bool):
            return raw
        text = str(raw if raw is not None else "").strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
        raise ValidationError(f'Invalid boolean for {column}: "{raw}"', field=column)

    text = "" if raw is None else str(raw).strip()
    if kind == "year":
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            raise ValidationError(f'Invalid year for {column}: "{raw}"', field=column) from None
    if kind == "date":
        if isinstance(raw, date) and not isinstance(raw, datetime):
            return raw
        if not text:
            return None
        try:
            return date.fromisoformat(text)
        except ValueError:
            raise ValidationError(
                f'Invalid date for {column} (expected YYYY-MM-DD): "{raw}"', field=column
            ) from None
    if column == "display_name" and not text:
        raise ValidationError("display_name must not be blank", field=column)
    return text or None


class LinkMaintainer:
    """Graph mutations that keep person and family records mutually consistent."""

    def __init__(self, store: GraphStore) -> None:
        self.store = store

    @property
    def db(self) -> Database:
        return self.store.db

    # =========================================================================
    # Creation
    # =========================================================================

    def create_person(self, caller: Caller, fields: NewPerson | dict[str, Any]) -> Person:
        """Insert a person under a freshly minted handle with no links."""
        caller.require_edit("create_person")
        if isinstance(fields, NewPerson):
            new = fields
        else:
            try:
                new = NewPerson.model_validate(fields)
            except PydanticValidationError as exc:
                err = exc.errors()[0]
                field = ".".join(str(p) for p in err["loc"]) or None
                raise ValidationError(
                    f"{field}: {err['msg'].removeprefix('Value error, ')}", field=field
                ) from exc
        with self.db.transaction():
            handle = self.store.next_person_handle()
            person = self.store.insert_person(new.to_person(handle))
        logger.info("links.person_created", handle=handle, actor=caller.user_id)
        return person

    def add_family(
        self,
        caller: Caller,
        *,
        father_handle: str | None = None,
        mother_handle: str | None = None,
        children: list[str] | None = None,
    ) -> Family:
        """Create a family and write the person side of every link it names."""
        caller.require_edit("add_family")
        children = list(dict.fromkeys(children or []))
        if father_handle and father_handle == mother_handle:
            raise ValidationError("Father and mother must be different persons", field="mother_handle")
        parents = {h for h in (father_handle, mother_handle) if h}
        if parents & set(children):
            raise ValidationError("A parent cannot also be a child of the same family", field="children")

        with self.db.transaction():
            people = {h: self.store.require_person(h) for h in [*parents, *children]}
            handle = self.store.next_family_handle()
            family = self.store.insert_family(
                Family(
                    handle=handle,
                    father_handle=father_handle,
                    mother_handle=mother_handle,
                    children=children,
                )
            )
            for parent in parents:
                self.store.write_person_links(
                    parent, families=[*people[parent].families, handle]
                )
            for child in children:
                self.store.write_person_links(
                    child, parent_families=[*people[child].parent_families, handle]
                )
        logger.info(
            "links.family_created",
            handle=handle,
            father=father_handle,
            mother=mother_handle,
            children=len(children),
            actor=caller.user_id,
        )
        return family

    # =========================================================================
    # Deletion
    # =========================================================================

    def delete_person(self, caller: Caller, handle: str) -> None:
        """Delete a person that no family references."""
        caller.require_edit("delete_person")
        with self.db.transaction():
            blocking = self.store.families_referencing(handle)
            if blocking:
                handles = [f.handle for f in blocking]
                raise ReferentialIntegrityError(
                    f"Person {handle} is still linked in {len(handles)} "
                    f"famil{'y' if len(handles) == 1 else 'ies'} ({', '.join(handles)}); "
                    "remove those links first",
                    handle=handle,
                    blocking_families=handles,
                )
            self.store.delete_person_row(handle)
        logger.info("links.person_deleted", handle=handle, actor=caller.user_id)

    # =========================================================================
    # Child links
    # =========================================================================

    def add_child_to_family(self, caller: Caller, person_handle: str, family_handle: str) -> None:
        caller.require_edit("add_child_to_family")
        with self.db.transaction():
            family = self.store.require_family(family_handle)
            person = self.store.require_person(person_handle)
            if family.is_parent(person_handle):
                raise ValidationError(
                    f"{person_handle} is a parent of {family_handle} and cannot be its child",
                    field="person_handle",
                )
            if person_handle not in family.children:
                self.store.write_family_children(family_handle, [*family.children, person_handle])
            if family_handle not in person.parent_families:
                self.store.write_person_links(
                    person_handle, parent_families=[*person.parent_families, family_handle]
                )
        logger.info("links.child_added", person=person_handle, family=family_handle, actor=caller.user_id)

    def remove_child_from_family(self, caller: Caller, person_handle: str, family_handle: str) -> None:
        caller.require_edit("remove_child_from_family")
        with self.db.transaction():
            family = self.store.require_family(family_handle)
            person = self.store.require_person(person_handle)
            if person_handle in family.children:
                self.store.write_family_children(
                    family_handle, [c for c in family.children if c != person_handle]
                )
            if family_handle in person.parent_families:
                self.store.write_person_links(
                    person_handle,
                    parent_families=[f for f in person.parent_families if f != family_handle],
                )
        logger.info("links.child_removed", person=person_handle, family=family_handle, actor=caller.user_id)

    def move_child_to_family(
        self,
        caller: Caller,
        child_handle: str,
        from_family_handle: str,
        to_family_handle: str,
    ) -> None:
        """Move a child between families; no intermediate state is visible."""
        caller.require_edit("move_child_to_family")
        if from_family_handle == to_family_handle:
            raise ValidationError("Source and target family are the same", field="to_family_handle")
        with self.db.transaction():
            source = self.store.require_family(from_family_handle)
            target = self.store.require_family(to_family_handle)
            child = self.store.require_person(child_handle)
            if child_handle not in source.children:
                raise ValidationError(
                    f"{child_handle} is not a child of {from_family_handle}", field="child_handle"
                )
            if target.is_parent(child_handle):
                raise ValidationError(
                    f"{child_handle} is a parent of {to_family_handle} and cannot be its child",
                    field="child_handle",
                )
            self.store.write_family_children(
                from_family_handle, [c for c in source.children if c != child_handle]
            )
            self.store.write_family_children(
                to_family_handle, [*(c for c in target.children if c != child_handle), child_handle]
            )
            parent_families = [
                to_family_handle if f == from_family_handle else f
                for f in child.parent_families
                if f != to_family_handle
            ]
            if to_family_handle not in parent_families:
                parent_families.append(to_family_handle)
            self.store.write_person_links(child_handle, parent_families=parent_families)
        logger.info(
            "links.child_moved",
            person=child_handle,
            source=from_family_handle,
            target=to_family_handle,
            actor=caller.user_id,
        )

    def reorder_children(self, caller: Caller, family_handle: str, children: list[str]) -> Family:
        """Rewrite the birth order of a family's children.

        ``children`` must name exactly the current children, so no person
        record changes.
        """
        caller.require_edit("reorder_children")
        children = list(children)
        if len(set(children)) != len(children):
            raise ValidationError("Child order lists a person more than once", field="children")
        with self.db.transaction():
            family = self.store.require_family(family_handle)
            if set(children) != set(family.children):
                raise ValidationError(
                    f"Child order must list exactly the children of {family_handle}: "
                    f"{', '.join(family.children) or '(none)'}",
                    field="children",
                )
            if children != family.children:
                self.store.write_family_children(family_handle, children)
            updated = self.store.require_family(family_handle)
        logger.info("links.children_reordered", family=family_handle, actor=caller.user_id)
        return updated

    # =========================================================================
    # Spouse links
    # =========================================================================

    def add_spouse_to_family(
        self,
        caller: Caller,
        person_handle: str,
        family_handle: str,
        role: SpouseRole | str,
    ) -> None:
        """Put a person in the father or mother slot of a family.

        A previous occupant of the slot is detached on the person side too.
        """
        caller.require_edit("add_spouse_to_family")
        role = SpouseRole(role)
        with self.db.transaction():
            family = self.store.require_family(family_handle)
            person = self.store.require_person(person_handle)
            if person_handle in family.children:
                raise ValidationError(
                    f"{person_handle} is a child of {family_handle} and cannot be its parent",
                    field="person_handle",
                )
            if family.parent_in_role(role.other) == person_handle:
                raise ValidationError(
                    f"{person_handle} already holds the {role.other.value} role in {family_handle}",
                    field="role",
                )
            previous = family.parent_in_role(role)
            if previous == person_handle:
                if family_handle not in person.families:
                    self.store.write_person_links(person_handle, families=[*person.families, family_handle])
                return

            self.store.write_family_parent(family_handle, role.column, person_handle)
            if previous:
                displaced = self.store.get_person(previous)
                if displaced is not None:
                    self.store.write_person_links(
                        previous, families=[f for f in displaced.families if f != family_handle]
                    )
            if family_handle not in person.families:
                self.store.write_person_links(person_handle, families=[*person.families, family_handle])
        logger.info(
            "links.spouse_added",
            person=person_handle,
            family=family_handle,
            role=role.value,
            replaced=previous,
            actor=caller.user_id,
        )

    def remove_spouse_from_family(
        self,
        caller: Caller,
        person_handle: str,
        family_handle: str,
        role: SpouseRole | str,
    ) -> None:
        caller.require_edit("remove_spouse_from_family")
        role = SpouseRole(role)
        with self.db.transaction():
            family = self.store.require_family(family_handle)
            person = self.store.require_person(person_handle)
            if family.parent_in_role(role) != person_handle:
                raise ValidationError(
                    f"{person_handle} is not the {role.value} of {family_handle}", field="role"
                )
            self.store.write_family_parent(family_handle, role.column, None)
            self.store.write_person_links(
                person_handle, families=[f for f in person.families if f != family_handle]
            )
        logger.info(
            "links.spouse_removed",
            person=person_handle,
            family=family_handle,
            role=role.value,
            actor=caller.user_id,
        )

    # =========================================================================
    # Scalar fields
    # =========================================================================

    def update_person_fields(self, caller: Caller, handle: str, values: dict[str, Any]) -> Person:
        """Update allow-listed person columns; dates drive their legacy year."""
        caller.require_edit("update_person_fields")
        values = {column: coerce_column_value(column, raw) for column, raw in values.items()}

        with self.db.transaction():
            person = self.store.require_person(handle)
            for prefix in ("birth", "death"):
                date_col, year_col = f"{prefix}_date", f"{prefix}_year"
                if date_col in values:
                    new_date = values[date_col]
                    if new_date is not None:
                        values[year_col] = new_date.year
                elif year_col in values:
                    current = getattr(person, date_col)
                    if current is not None and values[year_col] != current.year:
                        raise ValidationError(
                            f"{year_col} {values[year_col]} conflicts with {date_col} {current.isoformat()}",
                            field=year_col,
                        )
            self.store.update_person_columns(handle, values)
            updated = self.store.require_person(handle)
        logger.info("links.person_updated", handle=handle, fields=sorted(values), actor=caller.user_id)
        return updated

    # =========================================================================
    # Integrity
    # =========================================================================

    def verify_integrity(self) -> list[str]:
        """Return a description of every broken invariant (empty when consistent)."""
        with self.db.transaction():
            people = {p.handle: p for p in self.store.list_people()}
            families = {f.handle: f for f in self.store.list_families()}

        problems: list[str] = []
        for family in families.values():
            for ref in family.referenced_handles():
                if ref not in people:
                    problems.append(f"{family.handle} references missing person {ref}")
            for child in family.children:
                if child in people and family.handle not in people[child].parent_families:
                    problems.append(f"{child} missing parent family {family.handle}")
            for parent in (family.father_handle, family.mother_handle):
                if parent and parent in people and family.handle not in people[parent].families:
                    problems.append(f"{parent} missing spouse family {family.handle}")

        for person in people.values():
            for fh in person.parent_families:
                family = families.get(fh)
                if family is None or person.handle not in family.children:
                    problems.append(f"{person.handle} lists parent family {fh} that does not list it")
            for fh in person.families:
                family = families.get(fh)
                if family is None or not family.is_parent(person.handle):
                    problems.append(f"{person.handle} lists spouse family {fh} that does not list it")
        return problems
