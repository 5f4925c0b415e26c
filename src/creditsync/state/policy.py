"""Deterministic replica merge policy."""

from __future__ import annotations

from creditsync.models.replica import LifecyclePhase
from creditsync.state.events import UpdateSource

_TRANSITIONS: dict[LifecyclePhase, frozenset[LifecyclePhase]] = {
    LifecyclePhase.UNINITIALIZED: frozenset({LifecyclePhase.INITIALIZING, LifecyclePhase.TORN_DOWN}),
    LifecyclePhase.INITIALIZING: frozenset(
        {LifecyclePhase.READY, LifecyclePhase.UNINITIALIZED, LifecyclePhase.TORN_DOWN}
    ),
    LifecyclePhase.READY: frozenset({LifecyclePhase.TORN_DOWN}),
    LifecyclePhase.TORN_DOWN: frozenset({LifecyclePhase.UNINITIALIZED}),
}


def can_transition(current: LifecyclePhase, target: LifecyclePhase) -> bool:
    return target in _TRANSITIONS[current]


def should_accept_update(
    *,
    cached_version: float | None,
    incoming_version: float | None,
    incoming_source: UpdateSource,
    version_check: bool,
) -> bool:
    """Decide whether an incoming update should be applied.

    Policy:
    - The initial read always wins; it starts the session.
    - With version checking on and both versions known, strictly older
      snapshots are rejected. Equal versions re-apply, which is a no-op
      for an identical snapshot.
    - Otherwise last write observed wins.
    """
    if incoming_source == UpdateSource.INITIAL_READ:
        return True
    if not version_check:
        return True
    if incoming_version is None or cached_version is None:
        return True
    return incoming_version >= cached_version
