"""Append-only audit log.

Rows are only ever inserted. Appends made inside an open transaction commit
or roll back together with the mutation they describe.
"""
from __future__ import annotations

import sqlite3
from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from ..db import Database, utc_now
from ..ids import new_id

logger = structlog.get_logger(__name__)


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class AuditEntry(BaseModel):
    """One effected action."""
    id: str = Field(default_factory=new_id)
    actor_id: str
    action: AuditAction
    entity_type: str
    entity_id: str | None = None
    entity_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utc_now)


class AuditLog:
    """Audit rows stored in the shared registry database."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def append(
        self,
        actor_id: str,
        action: AuditAction | str,
        entity_type: str,
        entity_id: str | None = None,
        entity_name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            actor_id=actor_id,
            action=AuditAction(action),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            metadata={k: v for k, v in (metadata or {}).items() if v is not None},
        )
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO audit_logs (
                    id, actor_id, action, entity_type, entity_id, entity_name, metadata, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.actor_id,
                    entry.action.value,
                    entry.entity_type,
                    entry.entity_id,
                    entry.entity_name,
                    self.db.serialize_json(entry.metadata),
                    self.db.serialize_datetime(entry.created_at),
                ),
            )
        logger.debug(
            "audit.appended",
            action=entry.action.value,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        return entry

    def list(
        self,
        entity_id: str | None = None,
        action: AuditAction | str | None = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """Newest first."""
        conditions: list[str] = []
        params: list[Any] = []
        if entity_id is not None:
            conditions.append("entity_id = ?")
            params.append(entity_id)
        if action is not None:
            conditions.append("action = ?")
            params.append(AuditAction(action).value)
        where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""
        params.append(limit)
        with self.db.transaction() as cursor:
            cursor.execute(
                f"SELECT * FROM audit_logs {where_clause} ORDER BY created_at DESC, id DESC LIMIT ?",
                params,
            )
            return [self._row_to_entry(row) for row in cursor.fetchall()]

    def count(self, entity_id: str | None = None) -> int:
        with self.db.transaction() as cursor:
            if entity_id is None:
                cursor.execute("SELECT COUNT(*) FROM audit_logs")
            else:
                cursor.execute("SELECT COUNT(*) FROM audit_logs WHERE entity_id = ?", (entity_id,))
            return cursor.fetchone()[0]

    def _row_to_entry(self, row: sqlite3.Row) -> AuditEntry:
        return AuditEntry(
            id=row["id"],
            actor_id=row["actor_id"],
            action=AuditAction(row["action"]),
            entity_type=row["entity_type"],
            entity_id=row["entity_id"],
            entity_name=row["entity_name"],
            metadata=self.db.deserialize_json(row["metadata"]) or {},
            created_at=self.db.deserialize_datetime(row["created_at"]),
        )
