"""Which surface the host UI should show for the current replica."""

from __future__ import annotations

from enum import StrEnum

from creditsync.models.replica import LifecyclePhase, LocalReplica


class AccessState(StrEnum):
    SIGNED_OUT = "signed_out"
    INITIALIZING = "initializing"
    """Blocking wait state; credits may be stale and must not be shown."""
    NOT_SUBSCRIBED = "not_subscribed"
    OUT_OF_CREDITS = "out_of_credits"
    READY = "ready"


def resolve_access(identity: str | None, phase: LifecyclePhase, replica: LocalReplica) -> AccessState:
    if identity is None:
        return AccessState.SIGNED_OUT
    if phase != LifecyclePhase.READY or not replica.is_initialized:
        return AccessState.INITIALIZING
    if not replica.is_subscribed:
        return AccessState.NOT_SUBSCRIBED
    if not replica.has_credits:
        return AccessState.OUT_OF_CREDITS
    return AccessState.READY
