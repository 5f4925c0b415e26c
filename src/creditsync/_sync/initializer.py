"""Initialization sequencer: the first authoritative read of a session."""

from __future__ import annotations

import logging
from collections.abc import Callable

from creditsync.exceptions import RecordNotFoundError
from creditsync.gateway.base import RecordGateway
from creditsync.ingestion.records import build_initial_update
from creditsync.state.store import ReplicaStore

_logger = logging.getLogger(__name__)


class InitializationSequencer:
    def __init__(self, *, gateway: RecordGateway, store: ReplicaStore) -> None:
        self._gateway = gateway
        self._store = store

    async def run(self, identity: str, is_current: Callable[[], bool]) -> bool:
        """Read the record of *identity* and mark the replica initialized.

        Returns ``False`` when the session ended while the read was in
        flight; the result is then discarded.  Read failures put the store
        back to ``UNINITIALIZED`` and propagate so the caller can retry; so
        does cancellation.
        """
        _logger.debug("Initial read for identity=%s", identity)
        try:
            record = await self._gateway.read_record(identity)
        except RecordNotFoundError:
            record = None
        except BaseException:
            if is_current():
                self._store.abort_initialization()
            raise

        if not is_current():
            _logger.debug("Discarding initial read for stale identity=%s", identity)
            return False

        update = build_initial_update(identity, record, self._store.defaults)
        self._store.apply(update)
        _logger.debug(
            "Initialized identity=%s subscribed=%s credits=%s",
            identity,
            record is not None,
            self._store.replica.credits,
        )
        return True
