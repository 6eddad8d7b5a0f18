"""Contribution records and the typed payloads they carry.

A contribution stores its payload as serialized JSON in ``new_value``; the
payload schema is chosen by ``field_name``. Payloads are only parsed at apply
time, so a malformed payload can sit in the queue until a reviewer acts on it.
"""
from __future__ import annotations

import json
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PydanticValidationError

from ..db import utc_now
from ..exceptions import ValidationError
from ..graph.models import Gender
from ..ids import new_id


class ContributionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ContributionKind(str, Enum):
    EDIT_PERSON_FIELD = "edit_person_field"
    ADD_PERSON = "add_person"
    DELETE_PERSON = "delete_person"
    ADD_EVENT = "add_event"
    ADD_POST = "add_post"
    ADD_QUIZ_QUESTION = "add_quiz_question"


class Contribution(BaseModel):
    """A member-proposed change awaiting (or past) review."""
    id: str = Field(default_factory=new_id)
    author_id: str
    author_email: str | None = None
    field_name: str
    field_label: str | None = None
    new_value: str
    old_value: str | None = None
    note: str | None = None
    person_handle: str | None = None
    person_name: str | None = None
    status: ContributionStatus = ContributionStatus.PENDING
    admin_note: str | None = None
    reviewed_by: str | None = None
    reviewed_at: datetime | None = None
    applied_at: datetime | None = None
    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None

    @property
    def display_name(self) -> str:
        """Name shown for this contribution in audit rows."""
        return self.person_name or self.field_label or self.field_name


# =============================================================================
# Payloads
# =============================================================================


def _strip_or_none(v: Any) -> Any:
    if isinstance(v, str):
        v = v.strip()
        return v or None
    return v


class EditPersonFieldPayload(BaseModel):
    model_config = {"populate_by_name": True}

    kind: Literal["edit_person_field"] = "edit_person_field"
    db_column: str = Field(alias="dbColumn")
    label: str | None = None
    value: Any = None


class AddPersonPayload(BaseModel):
    model_config = {"populate_by_name": True}

    kind: Literal["add_person"] = "add_person"
    display_name: str = Field(alias="displayName")
    gender: Gender = Gender.MALE
    generation: int = Field(ge=1)
    birth_date: date | None = Field(None, alias="birthDate")
    death_date: date | None = Field(None, alias="deathDate")
    birth_year: int | None = Field(None, alias="birthYear")
    death_year: int | None = Field(None, alias="deathYear")
    is_living: bool = Field(True, alias="isLiving")
    occupation: str | None = None
    current_address: str | None = Field(None, alias="currentAddress")
    phone: str | None = None
    email: str | None = None
    spouse_handle: str | None = Field(None, alias="spouseHandle")

    @field_validator("display_name")
    @classmethod
    def _require_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("displayName must not be blank")
        return v

    @field_validator("gender", mode="before")
    @classmethod
    def _coerce_gender(cls, v: Any) -> Gender:
        return Gender.MALE if v is None else Gender.coerce(v)

    @field_validator("is_living", mode="before")
    @classmethod
    def _default_living(cls, v: Any) -> Any:
        return True if v is None else v

    @field_validator("birth_year", "death_year", mode="before")
    @classmethod
    def _falsy_year(cls, v: Any) -> Any:
        # 0 and "" mean "unknown year"
        return None if v in (0, "", None) else v

    @field_validator(
        "birth_date", "death_date", "occupation", "current_address", "phone", "email", "spouse_handle",
        mode="before",
    )
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        return _strip_or_none(v)


class DeletePersonPayload(BaseModel):
    kind: Literal["delete_person"] = "delete_person"
    handle: str

    @field_validator("handle")
    @classmethod
    def _require_handle(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("handle of the person to delete is missing")
        return v


class AddEventPayload(BaseModel):
    model_config = {"populate_by_name": True}

    kind: Literal["add_event"] = "add_event"
    title: str
    start_at: datetime = Field(alias="startAt")
    description: str | None = None
    location: str | None = None
    type: str | None = None

    @field_validator("title")
    @classmethod
    def _require_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be blank")
        return v

    @field_validator("start_at", mode="before")
    @classmethod
    def _parse_start(cls, v: Any) -> Any:
        if isinstance(v, str):
            text = v.strip()
            if not text:
                raise ValueError("startAt is required")
            try:
                return datetime.fromisoformat(text.replace("Z", "+00:00"))
            except ValueError:
                raise ValueError(f'startAt is not a valid ISO datetime: "{v}"') from None
        return v

    @field_validator("description", "location", "type", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        return _strip_or_none(v)


class AddPostPayload(BaseModel):
    kind: Literal["add_post"] = "add_post"
    title: str | None = None
    body: str

    @field_validator("body")
    @classmethod
    def _require_body(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("body must not be blank")
        return v

    @field_validator("title", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        return _strip_or_none(v)


class AddQuizQuestionPayload(BaseModel):
    model_config = {"populate_by_name": True}

    kind: Literal["add_quiz_question"] = "add_quiz_question"
    question: str
    correct_answer: str = Field(alias="correctAnswer")
    hint: str | None = None

    @field_validator("question", "correct_answer")
    @classmethod
    def _require_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("hint", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        return _strip_or_none(v)


ContributionPayload = Annotated[
    Union[
        EditPersonFieldPayload,
        AddPersonPayload,
        DeletePersonPayload,
        AddEventPayload,
        AddPostPayload,
        AddQuizQuestionPayload,
    ],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter[ContributionPayload] = TypeAdapter(ContributionPayload)

KNOWN_KINDS = frozenset(k.value for k in ContributionKind)


def _first_error(exc: PydanticValidationError) -> tuple[str, str | None]:
    err = exc.errors()[0]
    loc = [str(part) for part in err.get("loc", ()) if str(part) not in KNOWN_KINDS]
    field = ".".join(loc) or None
    msg = err.get("msg", "invalid value")
    # pydantic prefixes messages raised from validators
    msg = msg.removeprefix("Value error, ")
    return (f"{field}: {msg}" if field else msg), field


def _delete_target(contribution: Contribution) -> dict[str, Any]:
    handle = (contribution.person_handle or "").strip()
    if not handle:
        raw = (contribution.new_value or "").strip()
        try:
            decoded = json.loads(raw)
        except ValueError:
            decoded = raw
        if isinstance(decoded, dict):
            decoded = decoded.get("handle", "")
        handle = decoded if isinstance(decoded, str) else ""
    return {"kind": ContributionKind.DELETE_PERSON.value, "handle": handle}


def parse_payload(contribution: Contribution) -> ContributionPayload:
    """Decode a contribution's ``new_value`` into its typed payload.

    Raises:
        ValidationError: the JSON is malformed or a required field is missing
        ValueError: ``field_name`` is not a known kind
    """
    kind = contribution.field_name
    if kind not in KNOWN_KINDS:
        raise ValueError(f"Unknown contribution kind: {kind}")

    if kind == ContributionKind.DELETE_PERSON.value:
        data = _delete_target(contribution)
    else:
        try:
            decoded = json.loads(contribution.new_value)
        except ValueError:
            raise ValidationError("Contribution payload is not valid JSON", field="new_value") from None
        if not isinstance(decoded, dict):
            raise ValidationError("Contribution payload must be a JSON object", field="new_value")
        data = {**decoded, "kind": kind}

    try:
        return _PAYLOAD_ADAPTER.validate_python(data)
    except PydanticValidationError as exc:
        message, field = _first_error(exc)
        raise ValidationError(message, field=field) from exc
