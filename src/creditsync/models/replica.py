"""Local replica of the subscription record."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from creditsync._constants import TRIAL_CREDITS
from creditsync.models.record import PreferredLanguage


class LifecyclePhase(StrEnum):
    """Identity session state machine.

    ``UNINITIALIZED -> INITIALIZING -> READY -> TORN_DOWN -> UNINITIALIZED``.
    A failed initial read goes back to ``UNINITIALIZED``.
    """

    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    TORN_DOWN = "torn_down"


class LocalReplica(BaseModel):
    """In-process view of the current identity's record plus readiness."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    is_subscribed: bool = False
    credits: int = Field(default=TRIAL_CREDITS, ge=0)
    preferred_language: PreferredLanguage = PreferredLanguage.PYTHON
    is_initialized: bool = False

    @property
    def has_credits(self) -> bool:
        return self.credits > 0
