"""Debit outcomes and user-facing notices."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class DebitOutcome(StrEnum):
    """Result of one billable-action debit attempt."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    """Replica not initialized; the gateway was not called."""
    NO_RECORD = "no_record"
    """No subscription record exists; nothing to debit."""
    EXHAUSTED = "exhausted"
    """Credits already at zero; no write was issued."""
    DISCARDED = "discarded"
    """The identity session ended before the write completed."""


class NoticeVariant(StrEnum):
    NEUTRAL = "neutral"
    SUCCESS = "success"
    ERROR = "error"


class Notice(BaseModel):
    """Transient message for the host UI (toast)."""

    model_config = ConfigDict(frozen=True)

    title: str
    description: str
    variant: NoticeVariant = NoticeVariant.NEUTRAL
