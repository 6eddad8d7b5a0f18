"""Member contributions: queue, review and apply."""
from __future__ import annotations

from giapha.contributions.apply import ApplyEngine, ApplyResult
from giapha.contributions.models import (
    AddEventPayload,
    AddPersonPayload,
    AddPostPayload,
    AddQuizQuestionPayload,
    Contribution,
    ContributionKind,
    ContributionStatus,
    DeletePersonPayload,
    EditPersonFieldPayload,
    parse_payload,
)
from giapha.contributions.queue import ContributionQueue
from giapha.contributions.review import ReviewWorkflow

__all__ = [
    "AddEventPayload",
    "AddPersonPayload",
    "AddPostPayload",
    "AddQuizQuestionPayload",
    "ApplyEngine",
    "ApplyResult",
    "Contribution",
    "ContributionKind",
    "ContributionQueue",
    "ContributionStatus",
    "DeletePersonPayload",
    "EditPersonFieldPayload",
    "ReviewWorkflow",
    "parse_payload",
]
