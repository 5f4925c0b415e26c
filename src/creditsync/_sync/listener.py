"""Change feed listener.

Owns the single live subscription of the current identity and turns its
events into store updates.  Events that arrive while the initial read is
in flight are held back and replayed once the replica is ready, so no
change between subscribing and reading is lost.
"""

from __future__ import annotations

import logging

from creditsync.exceptions import SubscriptionSetupError
from creditsync.gateway.base import FeedHandle, RecordGateway
from creditsync.ingestion.records import build_update_from_change
from creditsync.models.change import ChangeEvent
from creditsync.models.replica import LifecyclePhase
from creditsync.state.store import ReplicaStore

_logger = logging.getLogger(__name__)


class ChangeFeedListener:
    def __init__(self, *, gateway: RecordGateway, store: ReplicaStore) -> None:
        self._gateway = gateway
        self._store = store
        self._handle: FeedHandle | None = None
        self._pending: list[ChangeEvent] = []

    @property
    def handle(self) -> FeedHandle | None:
        return self._handle

    @property
    def is_open(self) -> bool:
        return self._handle is not None and self._handle.active

    async def open(self, identity: str) -> FeedHandle:
        """Subscribe to the change feed of *identity*."""
        if self._handle is not None:
            # Never run two subscriptions; the caller closes the old one first.
            raise SubscriptionSetupError(
                f"Change feed already open for identity {self._handle.identity}",
            )
        self._pending.clear()
        holder: list[FeedHandle] = []

        def _handler(event: ChangeEvent) -> None:
            # The feed may deliver before subscribe_changes has returned.
            self._on_event(identity, holder[0] if holder else None, event)

        try:
            handle = await self._gateway.subscribe_changes(identity, _handler)
        except SubscriptionSetupError:
            raise
        except Exception as exc:
            raise SubscriptionSetupError(f"Change feed subscribe for {identity} failed: {exc}") from exc
        holder.append(handle)
        self._handle = handle
        _logger.debug("Listening for changes identity=%s", identity)
        return handle

    async def close(self, handle: FeedHandle | None = None) -> None:
        """Close *handle*, or the current subscription when omitted."""
        if handle is None or handle is self._handle:
            handle = self._handle
            self._handle = None
            self._pending.clear()
        elif not handle.active:
            return
        if handle is None:
            return
        # Stop mutation immediately, before the unsubscribe round trip.
        handle.close()
        try:
            await self._gateway.unsubscribe(handle)
        except Exception:
            _logger.warning("Unsubscribe failed for identity=%s", handle.identity, exc_info=True)
        _logger.debug("Stopped listening identity=%s", handle.identity)

    def flush_pending(self) -> int:
        """Replay events held back during initialization; returns how many applied."""
        pending, self._pending = self._pending, []
        handle = self._handle
        if handle is None or not handle.active:
            return 0
        applied = 0
        for event in pending:
            if self._apply(handle.identity, event):
                applied += 1
        return applied

    def _on_event(self, identity: str, handle: FeedHandle | None, event: ChangeEvent) -> None:
        if handle is not None and not handle.active:
            _logger.debug("Dropping %s change on closed feed identity=%s", event.kind, identity)
            return
        if self._store.identity != identity:
            _logger.debug("Dropping %s change for previous identity=%s", event.kind, identity)
            return
        if self._store.phase == LifecyclePhase.INITIALIZING:
            self._pending.append(event)
            return
        self._apply(identity, event)

    def _apply(self, identity: str, event: ChangeEvent) -> bool:
        update = build_update_from_change(identity, event)
        if update is None:
            return False
        changed = self._store.apply(update)
        _logger.debug(
            "Applied %s change identity=%s changed=%s credits=%s",
            event.kind,
            identity,
            changed,
            self._store.replica.credits,
        )
        return changed
