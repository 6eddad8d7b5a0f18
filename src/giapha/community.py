"""Side collections fed by contributions: events, posts and quiz questions.

These tables sit next to the graph but take no part in its link invariants.
"""
from __future__ import annotations

from datetime import datetime
from enum import Enum

import structlog
from pydantic import BaseModel, Field

from .db import Database, utc_now

logger = structlog.get_logger(__name__)


class EventType(str, Enum):
    MEMORIAL = "MEMORIAL"
    MEETING = "MEETING"
    FESTIVAL = "FESTIVAL"
    OTHER = "OTHER"

    @classmethod
    def normalize(cls, value: str | None) -> EventType:
        """Map free text onto a known type, falling back to OTHER."""
        if value:
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        return cls.OTHER


class CommunityEvent(BaseModel):
    id: int | None = None
    title: str
    description: str | None = None
    start_at: datetime
    location: str | None = None
    type: EventType = EventType.OTHER
    creator_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)


class Post(BaseModel):
    id: int | None = None
    author_id: str | None = None
    title: str | None = None
    body: str
    type: str = "general"
    status: str = "published"
    created_at: datetime = Field(default_factory=utc_now)


class QuizQuestion(BaseModel):
    id: int | None = None
    question: str
    correct_answer: str
    hint: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)


class CommunityStore:
    """Inserts and lookups for the side collections."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def add_event(self, event: CommunityEvent) -> CommunityEvent:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO events (title, description, start_at, location, type, creator_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.title,
                    event.description,
                    self.db.serialize_datetime(event.start_at),
                    event.location,
                    event.type.value,
                    event.creator_id,
                    self.db.serialize_datetime(event.created_at),
                ),
            )
            stored = event.model_copy(update={"id": cursor.lastrowid})
        logger.info("community.event_added", event_id=stored.id, type=stored.type.value)
        return stored

    def get_event(self, event_id: int | str) -> CommunityEvent | None:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM events WHERE id = ?", (int(event_id),))
            row = cursor.fetchone()
            if row is None:
                return None
            return CommunityEvent(
                id=row["id"],
                title=row["title"],
                description=row["description"],
                start_at=self.db.deserialize_datetime(row["start_at"]),
                location=row["location"],
                type=EventType(row["type"]),
                creator_id=row["creator_id"],
                created_at=self.db.deserialize_datetime(row["created_at"]),
            )

    def add_post(self, post: Post) -> Post:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO posts (author_id, title, body, type, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    post.author_id,
                    post.title,
                    post.body,
                    post.type,
                    post.status,
                    self.db.serialize_datetime(post.created_at),
                ),
            )
            stored = post.model_copy(update={"id": cursor.lastrowid})
        logger.info("community.post_added", post_id=stored.id)
        return stored

    def get_post(self, post_id: int | str) -> Post | None:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM posts WHERE id = ?", (int(post_id),))
            row = cursor.fetchone()
            if row is None:
                return None
            data = dict(row)
            data["created_at"] = self.db.deserialize_datetime(data["created_at"])
            return Post.model_validate(data)

    def add_question(self, question: QuizQuestion) -> QuizQuestion:
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO family_questions (question, correct_answer, hint, is_active, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    question.question,
                    question.correct_answer,
                    question.hint,
                    int(question.is_active),
                    self.db.serialize_datetime(question.created_at),
                ),
            )
            stored = question.model_copy(update={"id": cursor.lastrowid})
        logger.info("community.question_added", question_id=stored.id)
        return stored

    def get_question(self, question_id: int | str) -> QuizQuestion | None:
        with self.db.transaction() as cursor:
            cursor.execute("SELECT * FROM family_questions WHERE id = ?", (int(question_id),))
            row = cursor.fetchone()
            if row is None:
                return None
            data = dict(row)
            data["is_active"] = bool(data["is_active"])
            data["created_at"] = self.db.deserialize_datetime(data["created_at"])
            return QuizQuestion.model_validate(data)

    def count(self, table: str) -> int:
        if table not in ("events", "posts", "family_questions"):
            raise ValueError(f"Unknown community table: {table}")
        with self.db.transaction() as cursor:
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            return cursor.fetchone()[0]
