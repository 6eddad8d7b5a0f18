"""Graph data models: persons and the family units that connect them.

A Person records the families it heads (``families``) and the families it is
a child of (``parent_families``); a Family records its two parents and its
ordered children. Both sides are stored, so every link has a mirror that
:class:`giapha.graph.links.LinkMaintainer` keeps in step.
"""
from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from ..db import utc_now


class Gender(str, Enum):
    """Person gender; legacy integer codes are accepted on input."""
    MALE = "male"
    FEMALE = "female"
    UNKNOWN = "unknown"

    @classmethod
    def coerce(cls, value: Any) -> Gender:
        """Map legacy codes (1 = male, 2 = female) and strings onto the enum."""
        if isinstance(value, Gender):
            return value
        if value is None:
            return cls.UNKNOWN
        if isinstance(value, bool):
            return cls.UNKNOWN
        if isinstance(value, int):
            return {1: cls.MALE, 2: cls.FEMALE}.get(value, cls.UNKNOWN)
        text = str(value).strip().lower()
        if text in {"1", "m", "male", "nam"}:
            return cls.MALE
        if text in {"2", "f", "female", "nu", "nữ"}:
            return cls.FEMALE
        return cls.UNKNOWN


class SpouseRole(str, Enum):
    """Parent slot of a family."""
    FATHER = "father"
    MOTHER = "mother"

    @property
    def column(self) -> str:
        return f"{self.value}_handle"

    @property
    def other(self) -> SpouseRole:
        return SpouseRole.MOTHER if self is SpouseRole.FATHER else SpouseRole.FATHER


# Columns a person edit may touch, with their value kind.
EDITABLE_PERSON_COLUMNS: dict[str, str] = {
    "display_name": "text",
    "surname": "text",
    "first_name": "text",
    "nick_name": "text",
    "birth_date": "date",
    "death_date": "date",
    "birth_year": "year",
    "death_year": "year",
    "is_living": "bool",
    "occupation": "text",
    "company": "text",
    "education": "text",
    "phone": "text",
    "email": "text",
    "zalo": "text",
    "facebook": "text",
    "hometown": "text",
    "current_address": "text",
    "biography": "text",
    "notes": "text",
}


def _dedupe(handles: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for h in handles:
        if h not in seen:
            seen.add(h)
            out.append(h)
    return out


class Person(BaseModel):
    """Individual in the family graph."""
    handle: str
    display_name: str
    gender: Gender = Gender.UNKNOWN
    generation: int = Field(ge=1)

    birth_date: date | None = None
    death_date: date | None = None
    birth_year: int | None = None
    death_year: int | None = None

    is_living: bool = True
    is_patrilineal: bool = False
    is_privacy_filtered: bool = False

    surname: str | None = None
    first_name: str | None = None
    nick_name: str | None = None
    occupation: str | None = None
    company: str | None = None
    education: str | None = None
    phone: str | None = None
    email: str | None = None
    zalo: str | None = None
    facebook: str | None = None
    hometown: str | None = None
    current_address: str | None = None
    biography: str | None = None
    notes: str | None = None

    families: list[str] = Field(default_factory=list)
    parent_families: list[str] = Field(default_factory=list)

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("gender", mode="before")
    @classmethod
    def _coerce_gender(cls, v: Any) -> Gender:
        return Gender.coerce(v)

    @field_validator("families", "parent_families")
    @classmethod
    def _unique_links(cls, v: list[str]) -> list[str]:
        return _dedupe(v)

    @model_validator(mode="after")
    def _sync_legacy_years(self) -> Person:
        # Legacy year columns follow the full date whenever one is known.
        if self.birth_date is not None:
            self.birth_year = self.birth_date.year
        if self.death_date is not None:
            self.death_year = self.death_date.year
        return self


class Family(BaseModel):
    """Family unit linking two parents and their children."""
    handle: str
    father_handle: str | None = None
    mother_handle: str | None = None
    children: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("children")
    @classmethod
    def _unique_children(cls, v: list[str]) -> list[str]:
        return _dedupe(v)

    def parent_in_role(self, role: SpouseRole) -> str | None:
        return self.father_handle if role is SpouseRole.FATHER else self.mother_handle

    def is_parent(self, person_handle: str) -> bool:
        return person_handle in (self.father_handle, self.mother_handle)

    def referenced_handles(self) -> list[str]:
        """Every person handle this family points at."""
        refs = [h for h in (self.father_handle, self.mother_handle) if h]
        return _dedupe(refs + self.children)


class NewPerson(BaseModel):
    """Fields accepted when creating a person; the handle is minted by the store."""
    display_name: str
    gender: Gender = Gender.UNKNOWN
    generation: int = Field(ge=1)
    birth_date: date | None = None
    death_date: date | None = None
    birth_year: int | None = None
    death_year: int | None = None
    is_living: bool = True
    is_patrilineal: bool | None = None
    occupation: str | None = None
    current_address: str | None = None
    phone: str | None = None
    email: str | None = None

    @field_validator("gender", mode="before")
    @classmethod
    def _coerce_gender(cls, v: Any) -> Gender:
        return Gender.coerce(v)

    @field_validator("display_name")
    @classmethod
    def _require_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("display_name must not be blank")
        return v

    def to_person(self, handle: str) -> Person:
        data = self.model_dump(exclude={"is_patrilineal"})
        patrilineal = (
            self.is_patrilineal
            if self.is_patrilineal is not None
            else self.gender is Gender.MALE
        )
        return Person(handle=handle, is_patrilineal=patrilineal, **data)
