"""Sequential public handles for persons (``P001``) and families (``F001``).

The next handle is the highest numeric suffix in use (or ever issued, per
``handle_counters``) plus one, so handles are never reused. Two callers
reading the maximum at the same moment would mint the same handle; the
registry always calls the generator inside a write transaction, and the
primary key on ``handle`` rejects a collision instead of overwriting.
"""
from __future__ import annotations

import re
import sqlite3

PERSON_PREFIX = "P"
FAMILY_PREFIX = "F"


def parse_handle_number(handle: str, prefix: str) -> int | None:
    """Return the numeric suffix of ``handle`` or None when it is not sequential."""
    match = re.fullmatch(re.escape(prefix) + r"(\d+)", handle or "")
    return int(match.group(1)) if match else None


def format_handle(prefix: str, number: int, width: int = 3) -> str:
    return f"{prefix}{number:0{width}d}"


class HandleGenerator:
    """Mints handles by scanning the existing ones in a table."""

    TABLES = {
        PERSON_PREFIX: "people",
        FAMILY_PREFIX: "families",
    }

    def __init__(self, width: int = 3) -> None:
        self.width = width

    def _max_number(self, cursor: sqlite3.Cursor, prefix: str) -> int:
        table = self.TABLES[prefix]
        cursor.execute(
            f"SELECT handle FROM {table} WHERE handle LIKE ?",
            (f"{prefix}%",),
        )
        numbers = [
            n
            for n in (parse_handle_number(row["handle"], prefix) for row in cursor.fetchall())
            if n is not None
        ]
        return max(numbers, default=0)

    def _issued_number(self, cursor: sqlite3.Cursor, prefix: str) -> int:
        cursor.execute("SELECT last_number FROM handle_counters WHERE prefix = ?", (prefix,))
        row = cursor.fetchone()
        return row["last_number"] if row else 0

    def _next_number(self, cursor: sqlite3.Cursor, prefix: str) -> int:
        # The counter keeps a deleted highest handle from being minted again.
        return max(self._max_number(cursor, prefix), self._issued_number(cursor, prefix)) + 1

    def peek_handle(self, cursor: sqlite3.Cursor, prefix: str) -> str:
        """The handle ``next_handle`` would return, without recording it."""
        return format_handle(prefix, self._next_number(cursor, prefix), self.width)

    def next_handle(self, cursor: sqlite3.Cursor, prefix: str) -> str:
        """Mint a handle and record its number as issued."""
        number = self._next_number(cursor, prefix)
        cursor.execute(
            """
            INSERT INTO handle_counters (prefix, last_number) VALUES (?, ?)
            ON CONFLICT(prefix) DO UPDATE SET last_number = excluded.last_number
            """,
            (prefix, number),
        )
        return format_handle(prefix, number, self.width)

    def next_person_handle(self, cursor: sqlite3.Cursor) -> str:
        return self.next_handle(cursor, PERSON_PREFIX)

    def next_family_handle(self, cursor: sqlite3.Cursor) -> str:
        return self.next_handle(cursor, FAMILY_PREFIX)
