"""Change-feed event model.

Mirrors the postgres-changes payload pushed by the record store::

    {
        "eventType": "UPDATE",
        "table": "subscriptions",
        "commit_timestamp": "2024-05-01T10:00:00.123Z",
        "new": {"user_id": "...", "credits": 4, ...},
        "old": {"user_id": "...", "credits": 5, ...},
    }
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from creditsync.ingestion.normalize import parse_timestamp, safe_str
from creditsync.models.record import SubscriptionRecord


class ChangeKind(StrEnum):
    INSERTED = "INSERT"
    UPDATED = "UPDATE"
    DELETED = "DELETE"

    @classmethod
    def _missing_(cls, value: object) -> ChangeKind | None:
        if not isinstance(value, str):
            return None
        key = value.strip().upper()
        for member in cls:
            if key in (member.value, member.name):
                return member
        return None


class ChangeEvent(BaseModel):
    """A remote mutation of one identity's subscription record."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    kind: ChangeKind = Field(validation_alias=AliasChoices("kind", "eventType", "event_type", "type"))
    new: dict[str, Any] = Field(default_factory=dict)
    old: dict[str, Any] = Field(default_factory=dict)
    commit_timestamp: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("commit_timestamp", "commitTimestamp"),
    )
    table: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict, repr=False)

    @model_validator(mode="before")
    @classmethod
    def _ensure_raw(cls, values: Any) -> Any:
        if not isinstance(values, dict):
            return values
        merged = dict(values)
        # Realtime wraps the change in {"data": {...}} on some channels.
        inner = merged.get("data")
        if "eventType" not in merged and "kind" not in merged and isinstance(inner, dict):
            merged = {**inner, **{k: v for k, v in merged.items() if k != "data"}}
        for key in ("new", "old", "record", "old_record"):
            if merged.get(key) is None:
                merged.pop(key, None)
        if "new" not in merged and isinstance(merged.get("record"), dict):
            merged["new"] = merged["record"]
        if "old" not in merged and isinstance(merged.get("old_record"), dict):
            merged["old"] = merged["old_record"]
        merged.setdefault("raw", values)
        return merged

    @field_validator("commit_timestamp", mode="before")
    @classmethod
    def _parse_commit_ts(cls, value: Any) -> datetime | None:
        return parse_timestamp(value)

    @property
    def user_id(self) -> str | None:
        """Identity the event belongs to, when the payload carries it."""
        for snapshot in (self.new, self.old):
            candidate = safe_str(snapshot.get("user_id"))
            if candidate:
                return candidate
        return None

    def new_record(self, identity: str | None = None) -> SubscriptionRecord | None:
        """Parse the ``new`` snapshot, filling ``user_id`` from *identity*."""
        if not self.new:
            return None
        data = dict(self.new)
        if identity is not None and not safe_str(data.get("user_id")):
            data["user_id"] = identity
        if "updated_at" not in data and self.commit_timestamp is not None:
            data["updated_at"] = self.commit_timestamp
        return SubscriptionRecord.model_validate(data)
