from __future__ import annotations

import json
import os
from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.parser import ParserError, parse
from pydantic import BaseModel, Field, field_validator

__all__ = [
    "EnergyLevel",
    "Mood",
    "SymptomLog",
    "SymptomLogIn",
    "SymptomLogUpdate",
    "app_timezone",
    "coerce_score",
    "decode_tags",
    "normalize_tag",
    "normalize_tags",
    "parse_log_date",
    "stored_member",
]


class EnergyLevel(str, Enum):
    """Five-level daily energy scale."""

    depleted = "depleted"
    low = "low"
    moderate = "moderate"
    good = "good"
    energized = "energized"

    @classmethod
    def _missing_(cls, value: object) -> "EnergyLevel":
        if not isinstance(value, str):
            raise ValueError(f"Unknown energy level: {value}")
        val = value.strip().lower()
        # Written before the scale went from three to five levels.
        if val == "medium":
            return cls.moderate
        for member in cls:
            if member.value == val:
                return member
        return super()._missing_(value)


class Mood(str, Enum):
    """Dominant mood of the day."""

    calm = "calm"
    stressed = "stressed"
    sad = "sad"
    happy = "happy"

    @classmethod
    def _missing_(cls, value: object) -> "Mood":
        if not isinstance(value, str):
            raise ValueError(f"Unknown mood: {value}")
        val = value.strip().lower()
        for member in cls:
            if member.value == val:
                return member
        return super()._missing_(value)


_DEF_TZ = ZoneInfo("UTC")


def app_timezone() -> ZoneInfo:
    """Canonical timezone used to decide what "today" is (``APP_TIMEZONE``)."""
    name = os.getenv("APP_TIMEZONE", "UTC")
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return _DEF_TZ


def parse_log_date(value: date | datetime | str) -> date:
    """Reduce ``value`` to a calendar date.

    Aware datetimes are first converted to the canonical timezone so that a
    late-evening entry is not shifted onto the next day.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(app_timezone())
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return parse(value.strip()).date()
        except (ParserError, OverflowError, ValueError) as exc:
            raise ValueError(f"Invalid log_date: {value!r}") from exc
    raise TypeError("log_date must be a date, datetime or string")


def stored_member(enum_cls, value: Any):
    """Member whose value is exactly ``value``; anything else is ``None``.

    Stored rows are not normalised: case variants and retired values are
    treated as unrecognised.
    """
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        for member in enum_cls:
            if member.value == value:
                return member
    return None


def decode_tags(value: Any) -> List[Any]:
    """Return stored tags as a list.

    Some rows carry the tags as a JSON-encoded string rather than a native
    array. Anything that cannot be decoded to a list yields ``[]``.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return list(value)
    if isinstance(value, (str, bytes)):
        try:
            decoded = json.loads(value)
        except (TypeError, ValueError):
            return []
        return list(decoded) if isinstance(decoded, list) else []
    return []


def normalize_tag(tag: Any) -> str:
    """Lower-case and trim a tag; non-strings normalise to ``""``."""
    if not isinstance(tag, str):
        return ""
    return tag.strip().lower()


def normalize_tags(tags: Any) -> List[str]:
    seen: list[str] = []
    for raw in decode_tags(tags):
        tag = normalize_tag(raw)
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def coerce_score(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float):
        if not value.is_integer():
            return None
        value = int(value)
    try:
        score = int(value)
    except (TypeError, ValueError):
        return None
    return score if 0 <= score <= 10 else None


def _tags_from_input(value: Any) -> List[str]:
    # Form posts may send "cramps, bloating" instead of a list.
    if isinstance(value, str) and not value.lstrip().startswith("["):
        value = value.split(",")
    return normalize_tags(value)


class SymptomLogIn(BaseModel):
    """Payload accepted when a user records a day."""

    log_date: date
    pain_intensity: Optional[int] = Field(default=None, ge=0, le=10)
    energy_level: Optional[EnergyLevel] = None
    mood: Optional[Mood] = None
    sleep_quality: Optional[int] = Field(default=None, ge=0, le=10)
    stress_level: Optional[int] = Field(default=None, ge=0, le=10)
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)

    @field_validator("log_date", mode="before")
    def _parse_date(cls, v: date | datetime | str) -> date:
        return parse_log_date(v)

    @field_validator("tags", mode="before")
    def _parse_tags(cls, v: Any) -> List[str]:
        return _tags_from_input(v)


class SymptomLogUpdate(SymptomLogIn):
    """Partial update; only fields explicitly sent are applied."""

    log_date: Optional[date] = None
    tags: Optional[List[str]] = None

    @field_validator("log_date", mode="before")
    def _parse_date(cls, v: date | datetime | str | None) -> date | None:
        return None if v is None else parse_log_date(v)

    @field_validator("tags", mode="before")
    def _parse_tags(cls, v: Any) -> List[str] | None:
        return None if v is None else _tags_from_input(v)


class SymptomLog(BaseModel):
    """A stored day as read back from the log store.

    Reading never fails on bad data: enum strings that are not an exact
    member value and out-of-range numbers become ``None``, undecodable tags
    become ``[]``.
    """

    id: Optional[int] = None
    user_id: str
    log_date: date
    pain_intensity: Optional[int] = None
    energy_level: Optional[EnergyLevel] = None
    mood: Optional[Mood] = None
    sleep_quality: Optional[int] = None
    stress_level: Optional[int] = None
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("user_id", mode="before")
    def _coerce_user(cls, v: Any) -> str:
        return str(v)

    @field_validator("log_date", mode="before")
    def _parse_date(cls, v: date | datetime | str) -> date:
        return parse_log_date(v)

    @field_validator("pain_intensity", "sleep_quality", "stress_level", mode="before")
    def _parse_scores(cls, v: Any) -> Optional[int]:
        return coerce_score(v)

    @field_validator("energy_level", mode="before")
    def _parse_energy(cls, v: Any) -> Optional[EnergyLevel]:
        return stored_member(EnergyLevel, v)

    @field_validator("mood", mode="before")
    def _parse_mood(cls, v: Any) -> Optional[Mood]:
        return stored_member(Mood, v)

    @field_validator("tags", mode="before")
    def _parse_tags(cls, v: Any) -> List[str]:
        return [t for t in decode_tags(v) if isinstance(t, str)]
