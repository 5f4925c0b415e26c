"""Deterministic in-memory replica store.

This is the only component allowed to mutate the local replica.  It holds
the replica of exactly one identity session at a time.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from creditsync.exceptions import CreditSyncError
from creditsync.models.record import PreferredLanguage
from creditsync.models.replica import LifecyclePhase, LocalReplica
from creditsync.state.events import ReplicaUpdate, UpdateSource
from creditsync.state.policy import can_transition, should_accept_update

_logger = logging.getLogger(__name__)

ReplicaListener = Callable[[LocalReplica], None]


class ReplicaStore:
    """Single-writer store for the current identity's replica.

    Given the same sequence of :class:`ReplicaUpdate`s for a session it
    produces the same replica, and re-applying an update is a no-op.
    """

    def __init__(
        self,
        *,
        defaults: LocalReplica | None = None,
        version_check: bool = True,
    ) -> None:
        self._defaults = (defaults or LocalReplica()).model_copy(update={"is_initialized": False})
        self._version_check = version_check
        self._identity: str | None = None
        self._phase = LifecyclePhase.UNINITIALIZED
        self._replica = self._defaults
        self._version: float | None = None
        self._listeners: list[ReplicaListener] = []

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def phase(self) -> LifecyclePhase:
        return self._phase

    @property
    def replica(self) -> LocalReplica:
        return self._replica

    @property
    def version(self) -> float | None:
        return self._version

    @property
    def defaults(self) -> LocalReplica:
        return self._defaults

    def add_listener(self, listener: ReplicaListener) -> Callable[[], None]:
        """Register a change listener; returns an unregister callable."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def transition(self, target: LifecyclePhase) -> None:
        """Move the lifecycle state machine to *target*."""
        if self._phase == target:
            return
        if not can_transition(self._phase, target):
            raise CreditSyncError(f"Invalid lifecycle transition {self._phase} -> {target}")
        _logger.debug("Lifecycle %s -> %s identity=%s", self._phase, target, self._identity)
        self._phase = target

    def begin_session(self, identity: str) -> None:
        """Bind the store to *identity* with a fresh, uninitialized replica."""
        if self._phase not in (LifecyclePhase.UNINITIALIZED, LifecyclePhase.TORN_DOWN):
            raise CreditSyncError(f"Cannot begin a session while {self._phase}")
        if self._phase == LifecyclePhase.TORN_DOWN:
            self.transition(LifecyclePhase.UNINITIALIZED)
        self._identity = identity
        self._version = None
        self._set_replica(self._defaults)
        self.transition(LifecyclePhase.INITIALIZING)

    def abort_initialization(self) -> None:
        """Return to ``UNINITIALIZED`` after a failed initial read."""
        if self._phase != LifecyclePhase.INITIALIZING:
            return
        self._version = None
        self._set_replica(self._defaults)
        self.transition(LifecyclePhase.UNINITIALIZED)

    def retry_initialization(self) -> None:
        if self._phase == LifecyclePhase.UNINITIALIZED and self._identity is not None:
            self.transition(LifecyclePhase.INITIALIZING)

    def end_session(self) -> None:
        """Tear the session down; the identity is released."""
        if self._phase == LifecyclePhase.UNINITIALIZED and self._identity is None:
            return
        self.transition(LifecyclePhase.TORN_DOWN)
        self._identity = None
        self._version = None
        self._set_replica(self._defaults)

    def apply(self, update: ReplicaUpdate) -> bool:
        """Apply a normalized update; returns ``True`` when the replica changed."""
        if update.identity != self._identity:
            _logger.debug(
                "Dropping %s update for identity=%s (current=%s)",
                update.source,
                update.identity,
                self._identity,
            )
            return False
        if self._phase not in (LifecyclePhase.INITIALIZING, LifecyclePhase.READY):
            _logger.debug("Dropping %s update while %s", update.source, self._phase)
            return False
        if update.source != UpdateSource.INITIAL_READ and self._phase != LifecyclePhase.READY:
            # Only the initial read may populate an initializing replica.
            _logger.debug("Dropping %s update before initialization completed", update.source)
            return False

        if not should_accept_update(
            cached_version=self._version,
            incoming_version=update.version,
            incoming_source=update.source,
            version_check=self._version_check,
        ):
            _logger.debug(
                "Rejecting stale %s update version=%s cached=%s",
                update.source,
                update.version,
                self._version,
            )
            return False

        patch = self._normalize(update)
        if update.version is not None:
            if self._version is None or update.source == UpdateSource.INITIAL_READ:
                self._version = update.version
            else:
                self._version = max(self._version, update.version)

        if patch.get("is_initialized"):
            self.transition(LifecyclePhase.READY)

        merged = self._replica.model_copy(update=patch)
        if merged == self._replica:
            return False
        self._set_replica(merged)
        return True

    def _normalize(self, update: ReplicaUpdate) -> dict[str, Any]:
        patch = dict(update.data)
        # isInitialized flips exactly once per session, and only from the initial read.
        if "is_initialized" in patch:
            if update.source != UpdateSource.INITIAL_READ or not patch["is_initialized"]:
                patch.pop("is_initialized")
        if "credits" in patch:
            credits = int(patch["credits"])
            patch["credits"] = credits if credits > 0 else 0
        if "preferred_language" in patch:
            language = patch["preferred_language"]
            if language is None:
                patch.pop("preferred_language")
            else:
                patch["preferred_language"] = PreferredLanguage(language)
        if "is_subscribed" in patch:
            patch["is_subscribed"] = bool(patch["is_subscribed"])
        return patch

    def _set_replica(self, replica: LocalReplica) -> None:
        changed = replica != self._replica
        self._replica = replica
        if not changed:
            return
        for listener in list(self._listeners):
            try:
                listener(replica)
            except Exception:
                _logger.debug("Replica listener failed", exc_info=True)
