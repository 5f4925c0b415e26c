"""Subscription record model (authoritative remote row)."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import Field, field_validator

from creditsync.ingestion.normalize import non_negative_or_zero, parse_timestamp
from creditsync.models._base import SyncBaseModel


class PreferredLanguage(StrEnum):
    """Output language a user picked for generated solutions."""

    PYTHON = "python"
    JAVASCRIPT = "javascript"
    JAVA = "java"
    GOLANG = "golang"
    CPP = "cpp"
    SWIFT = "swift"
    KOTLIN = "kotlin"
    RUBY = "ruby"
    SQL = "sql"

    @classmethod
    def _missing_(cls, value: object) -> PreferredLanguage | None:
        if not isinstance(value, str):
            return None
        key = value.strip().lower()
        key = _LANGUAGE_ALIASES.get(key, key)
        for member in cls:
            if member.value == key:
                return member
        return None

    @property
    def label(self) -> str:
        """Display name used by language pickers."""
        return _LANGUAGE_LABELS[self]


_LANGUAGE_ALIASES: dict[str, str] = {
    "go": "golang",
    "c++": "cpp",
    "js": "javascript",
    "py": "python",
}

_LANGUAGE_LABELS: dict[PreferredLanguage, str] = {
    PreferredLanguage.PYTHON: "Python",
    PreferredLanguage.JAVASCRIPT: "JavaScript",
    PreferredLanguage.JAVA: "Java",
    PreferredLanguage.GOLANG: "Go",
    PreferredLanguage.CPP: "C++",
    PreferredLanguage.SWIFT: "Swift",
    PreferredLanguage.KOTLIN: "Kotlin",
    PreferredLanguage.RUBY: "Ruby",
    PreferredLanguage.SQL: "SQL",
}


def parse_language(value: Any) -> PreferredLanguage | None:
    """Lenient language parse; unknown values map to ``None``."""
    if isinstance(value, PreferredLanguage):
        return value
    if not isinstance(value, str):
        return None
    try:
        return PreferredLanguage(value)
    except ValueError:
        return None


class SubscriptionRecord(SyncBaseModel):
    """One row of the subscription table.

    Parameters
    ----------
    user_id : str
        Owning identity.
    credits : int
        Remaining usage credits, clamped to ``>= 0``.
    preferred_language : PreferredLanguage or None
        ``None`` when unset or not a supported language.
    updated_at : datetime or None
        Last modification time, used as snapshot version.
    """

    user_id: str
    credits: int = 0
    preferred_language: PreferredLanguage | None = None
    updated_at: datetime | None = Field(default=None)

    @field_validator("credits", mode="before")
    @classmethod
    def _clamp_credits(cls, value: Any) -> int:
        parsed = non_negative_or_zero(value)
        return 0 if parsed is None else parsed

    @field_validator("preferred_language", mode="before")
    @classmethod
    def _lenient_language(cls, value: Any) -> PreferredLanguage | None:
        return parse_language(value)

    @field_validator("updated_at", mode="before")
    @classmethod
    def _parse_updated_at(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @field_validator("user_id", mode="before")
    @classmethod
    def _coerce_user_id(cls, value: Any) -> str:
        text = str(value).strip()
        if not text:
            raise ValueError("user_id must be non-empty")
        return text

    @property
    def version(self) -> float | None:
        """Snapshot version (epoch seconds of ``updated_at``)."""
        if self.updated_at is None:
            return None
        return self.updated_at.timestamp()
