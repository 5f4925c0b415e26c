"""Base model for record-store payloads.

Every payload model inherits from :class:`SyncBaseModel` which provides:

* frozen instances, so snapshots can be shared across threads.
* A ``model_validator(mode="before")`` that drops ``None`` / empty-string
  columns so the field default is used.
* A ``raw`` dict that captures the original payload.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class SyncBaseModel(BaseModel):
    """Base for gateway payload models."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    raw: dict[str, Any] = Field(default_factory=dict, repr=False)
    """Original payload dict."""

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Drop empty columns and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and not value.strip():
                continue
            cleaned[key] = value
        # Keep an explicit raw= from kwargs construction.
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned
