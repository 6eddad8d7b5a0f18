"""Durable queue of member contributions."""
from __future__ import annotations

import sqlite3
from datetime import datetime
from typing import Any

import structlog

from ..caller import Caller
from ..db import Database, utc_now
from ..exceptions import NotFoundOrSkip, ValidationError
from .models import Contribution, ContributionStatus

logger = structlog.get_logger(__name__)

CONTRIBUTION_COLUMNS = (
    "id", "author_id", "author_email", "person_handle", "person_name",
    "field_name", "field_label", "old_value", "new_value", "note",
    "status", "admin_note", "reviewed_by", "reviewed_at", "applied_at", "created_at",
)


class ContributionQueue:
    """Pending, reviewed and applied contributions.

    Records are created ``pending`` by :meth:`submit`, moved to a terminal
    status once by :meth:`mark_reviewed`, and sealed by :meth:`claim_for_apply`.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    def submit(
        self,
        author: Caller,
        field_name: str,
        new_value: str,
        *,
        field_label: str | None = None,
        person_handle: str | None = None,
        person_name: str | None = None,
        old_value: str | None = None,
        note: str | None = None,
    ) -> Contribution:
        """Queue a contribution for review.

        Any authenticated member may submit. The payload is not checked here
        beyond being non-empty; schema errors surface when it is applied.
        """
        if not (new_value or "").strip():
            raise ValidationError("new_value must not be empty", field="new_value")

        contribution = Contribution(
            author_id=author.user_id,
            author_email=author.email,
            field_name=field_name,
            field_label=field_label,
            new_value=new_value,
            old_value=old_value,
            note=note,
            person_handle=person_handle,
            person_name=person_name,
        )
        db = self.db
        placeholders = ", ".join("?" for _ in CONTRIBUTION_COLUMNS)
        with db.transaction() as cursor:
            cursor.execute(
                f"INSERT INTO contributions ({', '.join(CONTRIBUTION_COLUMNS)}) VALUES ({placeholders})",
                (
                    contribution.id,
                    contribution.author_id,
                    contribution.author_email,
                    contribution.person_handle,
                    contribution.person_name,
                    contribution.field_name,
                    contribution.field_label,
                    contribution.old_value,
                    contribution.new_value,
                    contribution.note,
                    contribution.status.value,
                    None,
                    None,
                    None,
                    None,
                    db.serialize_datetime(contribution.created_at),
                ),
            )
        logger.info(
            "queue.submitted",
            contribution_id=contribution.id,
            kind=field_name,
            author=author.user_id,
        )
        return contribution

    def get(self, contribution_id: str) -> Contribution | None:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM contributions WHERE id = ?", (contribution_id,))
            row = cursor.fetchone()
            return self._row_to_contribution(row) if row else None

    def require(self, contribution_id: str) -> Contribution:
        contribution = self.get(contribution_id)
        if contribution is None:
            raise NotFoundOrSkip(f"Contribution {contribution_id} not found")
        return contribution

    def list(
        self,
        status: ContributionStatus | str | None = None,
        author_id: str | None = None,
        limit: int = 100,
    ) -> list[Contribution]:
        """Newest first, optionally filtered by status and author."""
        conditions: list[str] = []
        params: list[Any] = []
        if status is not None:
            conditions.append("status = ?")
            params.append(ContributionStatus(status).value)
        if author_id is not None:
            conditions.append("author_id = ?")
            params.append(author_id)
        where_clause = "WHERE " + " AND ".join(conditions) if conditions else ""
        params.append(limit)
        with self.db.transaction() as cursor:
            cursor.execute(
                f"SELECT * FROM contributions {where_clause} ORDER BY created_at DESC, id DESC LIMIT ?",
                params,
            )
            return [self._row_to_contribution(row) for row in cursor.fetchall()]

    def mark_reviewed(
        self,
        contribution_id: str,
        status: ContributionStatus,
        reviewer_id: str,
        admin_note: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Move a pending contribution to a terminal status.

        Returns False when the contribution is no longer pending; the first
        decision wins.
        """
        if status is ContributionStatus.PENDING:
            raise ValidationError("A review decision must be approved or rejected", field="status")
        now = now or utc_now()
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE contributions
                SET status = ?, admin_note = ?, reviewed_by = ?, reviewed_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (status.value, admin_note, reviewer_id, self.db.serialize_datetime(now), contribution_id),
            )
            return cursor.rowcount == 1

    def claim_for_apply(self, contribution_id: str, now: datetime | None = None) -> bool:
        """Atomically seal an approved, unapplied contribution.

        Exactly one caller wins the claim; everyone else gets False. Run it
        inside the apply transaction so a failed handler releases the claim.
        """
        now = now or utc_now()
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                UPDATE contributions SET applied_at = ?
                WHERE id = ? AND status = 'approved' AND applied_at IS NULL
                """,
                (self.db.serialize_datetime(now), contribution_id),
            )
            won = cursor.rowcount == 1
        logger.debug("queue.claim", contribution_id=contribution_id, won=won)
        return won

    def _row_to_contribution(self, row: sqlite3.Row) -> Contribution:
        db = self.db
        data = dict(row)
        data["status"] = ContributionStatus(data["status"])
        for col in ("reviewed_at", "applied_at", "created_at"):
            data[col] = db.deserialize_datetime(data[col])
        return Contribution.model_validate(data)
