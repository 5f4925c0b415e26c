"""Normalized replica updates.

All ingestion paths (initial read, change feed, debit write-back, language
change) convert their inputs into these updates. Only the state/store layer
is allowed to merge them.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

REPLICA_FIELDS: frozenset[str] = frozenset({"is_subscribed", "credits", "preferred_language", "is_initialized"})


class UpdateSource(StrEnum):
    INITIAL_READ = "initial_read"
    FEED = "feed"
    DEBIT = "debit"
    LOCAL = "local"


class ReplicaUpdate(BaseModel):
    """A normalized patch to apply to the replica store."""

    model_config = ConfigDict(frozen=True)

    identity: str = Field(..., description="Identity the patch belongs to")
    source: UpdateSource
    observed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    version: float | None = Field(
        default=None,
        description="Snapshot version (epoch seconds of the row's updated_at), if known.",
    )
    data: dict[str, Any] = Field(default_factory=dict, description="Replica field patch")

    @field_validator("identity")
    @classmethod
    def _normalize_identity(cls, value: str) -> str:
        identity = value.strip()
        if not identity:
            raise ValueError("identity must be non-empty")
        return identity

    @field_validator("data")
    @classmethod
    def _known_fields(cls, value: dict[str, Any]) -> dict[str, Any]:
        unknown = set(value) - REPLICA_FIELDS
        if unknown:
            raise ValueError(f"unknown replica fields: {sorted(unknown)}")
        return value
