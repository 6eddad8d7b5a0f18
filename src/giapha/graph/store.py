"""SQLite persistence for Person and Family records.

GraphStore is the low-level layer: it reads and writes rows and verifies that
every write touched a row. It does not keep the two sides of a link in step;
that is LinkMaintainer's job, which calls these methods inside one
transaction.
"""
from __future__ import annotations

import sqlite3
from typing import Any

import structlog

from ..db import Database, utc_now
from ..exceptions import NotFoundOrForbidden
from .handles import FAMILY_PREFIX, PERSON_PREFIX, HandleGenerator
from .models import EDITABLE_PERSON_COLUMNS, Family, Gender, Person

logger = structlog.get_logger(__name__)


PERSON_COLUMNS = (
    "handle", "display_name", "gender", "generation",
    "birth_date", "death_date", "birth_year", "death_year",
    "is_living", "is_patrilineal", "is_privacy_filtered",
    "surname", "first_name", "nick_name", "occupation", "company", "education",
    "phone", "email", "zalo", "facebook", "hometown", "current_address",
    "biography", "notes", "families", "parent_families",
    "created_at", "updated_at",
)


class GraphStore:
    """Durable storage of persons and families."""

    def __init__(self, db: Database, handles: HandleGenerator | None = None) -> None:
        self.db = db
        self.handles = handles or HandleGenerator()

    # =========================================================================
    # Row conversion
    # =========================================================================

    def _person_params(self, person: Person) -> tuple[Any, ...]:
        db = self.db
        return (
            person.handle,
            person.display_name,
            person.gender.value,
            person.generation,
            db.serialize_date(person.birth_date),
            db.serialize_date(person.death_date),
            person.birth_year,
            person.death_year,
            int(person.is_living),
            int(person.is_patrilineal),
            int(person.is_privacy_filtered),
            person.surname,
            person.first_name,
            person.nick_name,
            person.occupation,
            person.company,
            person.education,
            person.phone,
            person.email,
            person.zalo,
            person.facebook,
            person.hometown,
            person.current_address,
            person.biography,
            person.notes,
            db.serialize_json(person.families),
            db.serialize_json(person.parent_families),
            db.serialize_datetime(person.created_at),
            db.serialize_datetime(person.updated_at),
        )

    def _row_to_person(self, row: sqlite3.Row) -> Person:
        db = self.db
        data = dict(row)
        data["gender"] = Gender(data["gender"])
        data["birth_date"] = db.deserialize_date(data["birth_date"])
        data["death_date"] = db.deserialize_date(data["death_date"])
        data["is_living"] = bool(data["is_living"])
        data["is_patrilineal"] = bool(data["is_patrilineal"])
        data["is_privacy_filtered"] = bool(data["is_privacy_filtered"])
        data["families"] = db.deserialize_json(data["families"]) or []
        data["parent_families"] = db.deserialize_json(data["parent_families"]) or []
        data["created_at"] = db.deserialize_datetime(data["created_at"])
        data["updated_at"] = db.deserialize_datetime(data["updated_at"])
        return Person.model_validate(data)

    def _row_to_family(self, row: sqlite3.Row) -> Family:
        db = self.db
        return Family(
            handle=row["handle"],
            father_handle=row["father_handle"],
            mother_handle=row["mother_handle"],
            children=db.deserialize_json(row["children"]) or [],
            created_at=db.deserialize_datetime(row["created_at"]),
            updated_at=db.deserialize_datetime(row["updated_at"]),
        )

    # =========================================================================
    # Handles
    # =========================================================================

    def next_person_handle(self) -> str:
        """Reserve the next person handle.

        The number is recorded as issued even if no person is inserted under
        it, so every call consumes one; use ``peek_person_handle`` to look.
        """
        with self.db.transaction() as cursor:
            return self.handles.next_person_handle(cursor)

    def next_family_handle(self) -> str:
        """Reserve the next family handle; consumes a number like ``next_person_handle``."""
        with self.db.transaction() as cursor:
            return self.handles.next_family_handle(cursor)

    def peek_person_handle(self) -> str:
        """The handle the next created person would get, without reserving it."""
        with self.db.transaction() as cursor:
            return self.handles.peek_handle(cursor, PERSON_PREFIX)

    def peek_family_handle(self) -> str:
        with self.db.transaction() as cursor:
            return self.handles.peek_handle(cursor, FAMILY_PREFIX)

    # =========================================================================
    # Person CRUD
    # =========================================================================

    def insert_person(self, person: Person) -> Person:
        placeholders = ", ".join("?" for _ in PERSON_COLUMNS)
        with self.db.transaction() as cursor:
            cursor.execute(
                f"INSERT INTO people ({', '.join(PERSON_COLUMNS)}) VALUES ({placeholders})",
                self._person_params(person),
            )
        logger.debug("graph.person_inserted", handle=person.handle)
        return person

    def get_person(self, handle: str) -> Person | None:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM people WHERE handle = ?", (handle,))
            row = cursor.fetchone()
            return self._row_to_person(row) if row else None

    def require_person(self, handle: str) -> Person:
        person = self.get_person(handle)
        if person is None:
            raise NotFoundOrForbidden(f"Person {handle} not found", table="people", key=handle)
        return person

    def list_people(self) -> list[Person]:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM people ORDER BY generation, display_name, handle")
            return [self._row_to_person(row) for row in cursor.fetchall()]

    def update_person_columns(self, handle: str, values: dict[str, Any]) -> None:
        """Write allow-listed scalar columns of one person."""
        unknown = set(values) - set(EDITABLE_PERSON_COLUMNS)
        if unknown:
            raise ValueError(f"Columns not editable: {sorted(unknown)}")
        if not values:
            return
        assignments = ", ".join(f"{col} = ?" for col in values)
        params = [
            self.db.serialize_date(v) if EDITABLE_PERSON_COLUMNS[col] == "date" else
            (int(v) if EDITABLE_PERSON_COLUMNS[col] == "bool" and v is not None else v)
            for col, v in values.items()
        ]
        with self.db.transaction() as cursor:
            self.db.execute_verified(
                cursor,
                f"UPDATE people SET {assignments}, updated_at = ? WHERE handle = ?",
                (*params, self.db.serialize_datetime(utc_now()), handle),
                table="people",
                key=handle,
            )

    def write_person_links(
        self,
        handle: str,
        *,
        families: list[str] | None = None,
        parent_families: list[str] | None = None,
    ) -> None:
        """Overwrite one or both link arrays of a person."""
        sets: list[str] = []
        params: list[Any] = []
        if families is not None:
            sets.append("families = ?")
            params.append(self.db.serialize_json(families))
        if parent_families is not None:
            sets.append("parent_families = ?")
            params.append(self.db.serialize_json(parent_families))
        if not sets:
            return
        with self.db.transaction() as cursor:
            self.db.execute_verified(
                cursor,
                f"UPDATE people SET {', '.join(sets)}, updated_at = ? WHERE handle = ?",
                (*params, self.db.serialize_datetime(utc_now()), handle),
                table="people",
                key=handle,
            )

    def delete_person_row(self, handle: str) -> None:
        with self.db.transaction() as cursor:
            self.db.execute_verified(
                cursor,
                "DELETE FROM people WHERE handle = ?",
                (handle,),
                table="people",
                key=handle,
            )
        logger.debug("graph.person_deleted", handle=handle)

    # =========================================================================
    # Family CRUD
    # =========================================================================

    def insert_family(self, family: Family) -> Family:
        db = self.db
        with db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO families (
                    handle, father_handle, mother_handle, children, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    family.handle,
                    family.father_handle,
                    family.mother_handle,
                    db.serialize_json(family.children),
                    db.serialize_datetime(family.created_at),
                    db.serialize_datetime(family.updated_at),
                ),
            )
        logger.debug("graph.family_inserted", handle=family.handle)
        return family

    def get_family(self, handle: str) -> Family | None:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM families WHERE handle = ?", (handle,))
            row = cursor.fetchone()
            return self._row_to_family(row) if row else None

    def require_family(self, handle: str) -> Family:
        family = self.get_family(handle)
        if family is None:
            raise NotFoundOrForbidden(f"Family {handle} not found", table="families", key=handle)
        return family

    def list_families(self) -> list[Family]:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM families ORDER BY handle")
            return [self._row_to_family(row) for row in cursor.fetchall()]

    def write_family_children(self, handle: str, children: list[str]) -> None:
        with self.db.transaction() as cursor:
            self.db.execute_verified(
                cursor,
                "UPDATE families SET children = ?, updated_at = ? WHERE handle = ?",
                (self.db.serialize_json(children), self.db.serialize_datetime(utc_now()), handle),
                table="families",
                key=handle,
            )

    def write_family_parent(self, handle: str, column: str, person_handle: str | None) -> None:
        if column not in ("father_handle", "mother_handle"):
            raise ValueError(f"Not a parent column: {column}")
        with self.db.transaction() as cursor:
            self.db.execute_verified(
                cursor,
                f"UPDATE families SET {column} = ?, updated_at = ? WHERE handle = ?",
                (person_handle, self.db.serialize_datetime(utc_now()), handle),
                table="families",
                key=handle,
            )

    def families_referencing(self, person_handle: str) -> list[Family]:
        """Families naming the person as father, mother or child."""
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                SELECT * FROM families
                WHERE father_handle = ? OR mother_handle = ?
                   OR EXISTS (SELECT 1 FROM json_each(families.children) WHERE json_each.value = ?)
                ORDER BY handle
                """,
                (person_handle, person_handle, person_handle),
            )
            return [self._row_to_family(row) for row in cursor.fetchall()]
