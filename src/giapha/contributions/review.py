"""Reviewer decisions on pending contributions."""
from __future__ import annotations

from datetime import datetime

import structlog

from ..audit import AuditAction, AuditLog
from ..caller import Caller
from ..db import utc_now
from ..exceptions import NotFoundOrSkip, ValidationError
from .models import Contribution, ContributionStatus
from .queue import ContributionQueue

logger = structlog.get_logger(__name__)


class ReviewWorkflow:
    """Moves contributions from pending to approved or rejected.

    Decisions are conditional on the record still being pending, so two
    reviewers racing on the same contribution cannot both win; the loser gets
    NotFoundOrSkip and the stored decision is left untouched.
    """

    def __init__(self, queue: ContributionQueue, audit: AuditLog) -> None:
        self.queue = queue
        self.audit = audit

    def decide(
        self,
        contribution_id: str,
        decision: ContributionStatus | str,
        reviewer: Caller,
        admin_note: str | None = None,
        now: datetime | None = None,
    ) -> Contribution:
        reviewer.require_edit("review_contribution")
        try:
            decision = ContributionStatus(decision)
        except ValueError:
            raise ValidationError(f"Unknown review decision: {decision}", field="decision") from None
        admin_note = (admin_note or "").strip() or None
        now = now or utc_now()

        with self.queue.db.transaction():
            contribution = self.queue.require(contribution_id)
            if not self.queue.mark_reviewed(contribution_id, decision, reviewer.user_id, admin_note, now):
                raise NotFoundOrSkip(
                    f"Contribution {contribution_id} is already {contribution.status.value}"
                )
            if decision is ContributionStatus.REJECTED:
                self.audit.append(
                    actor_id=reviewer.user_id,
                    action=AuditAction.REJECT,
                    entity_type="contribution",
                    entity_id=contribution.id,
                    entity_name=contribution.display_name,
                    metadata={
                        "fieldName": contribution.field_name,
                        "personHandle": contribution.person_handle,
                        "authorEmail": contribution.author_email,
                        "adminNote": admin_note,
                    },
                )
            reviewed = self.queue.require(contribution_id)

        logger.info(
            "review.decided",
            contribution_id=contribution_id,
            decision=decision.value,
            reviewer=reviewer.user_id,
        )
        return reviewed

    def approve(self, contribution_id: str, reviewer: Caller, admin_note: str | None = None) -> Contribution:
        return self.decide(contribution_id, ContributionStatus.APPROVED, reviewer, admin_note)

    def reject(self, contribution_id: str, reviewer: Caller, admin_note: str | None = None) -> Contribution:
        return self.decide(contribution_id, ContributionStatus.REJECTED, reviewer, admin_note)
