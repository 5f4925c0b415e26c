"""Optimistic credit debit.

One billable action consumes exactly one credit.  The authoritative value
always comes from the gateway, never from the local replica, which may lag
behind the change feed.

Two strategies, in order of preference:

1. The gateway's atomic decrement-if-positive primitive
   (:class:`~creditsync.gateway.base.AtomicDecrement`).
2. Read, then compare-and-set ``credits := n - 1 where credits == n``,
   retried up to ``max_debit_retries`` times.  A lost race re-reads, so
   concurrent debits never collapse into one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from creditsync.config import SyncConfig
from creditsync.exceptions import ConflictError, GatewayError, RecordNotFoundError
from creditsync.gateway.base import AtomicDecrement, DecrementResult, RecordGateway
from creditsync.models.debit import DebitOutcome
from creditsync.models.replica import LifecyclePhase
from creditsync.state.events import ReplicaUpdate, UpdateSource
from creditsync.state.store import ReplicaStore

_logger = logging.getLogger(__name__)

# PostgREST / Postgres codes for "function does not exist".
_RPC_MISSING_CODES: frozenset[str] = frozenset({"PGRST202", "42883", "404"})


class CreditDebit:
    def __init__(
        self,
        *,
        config: SyncConfig,
        gateway: RecordGateway,
        store: ReplicaStore,
    ) -> None:
        self._config = config
        self._gateway = gateway
        self._store = store
        self._atomic_available = config.prefer_atomic_debit and isinstance(gateway, AtomicDecrement)

    @property
    def uses_atomic(self) -> bool:
        return self._atomic_available

    async def run(self, is_current: Callable[[], bool]) -> DebitOutcome:
        """Debit one credit for the current identity.

        Gateway failures propagate to the caller with the replica left
        unchanged.  There is no automatic retry beyond the compare-and-set
        loop.
        """
        identity = self._store.identity
        if identity is None or self._store.phase != LifecyclePhase.READY:
            _logger.warning("Attempted to decrement credits before initialization")
            return DebitOutcome.SKIPPED

        if self._atomic_available:
            gateway = self._gateway
            assert isinstance(gateway, AtomicDecrement)  # noqa: S101
            try:
                result = await gateway.decrement_credits(identity)
            except GatewayError as exc:
                if exc.code not in _RPC_MISSING_CODES:
                    raise
                _logger.info("Atomic decrement unavailable (%s); using compare-and-set", exc.code)
                self._atomic_available = False
            else:
                return self._finish(identity, result, is_current)

        result = await self._compare_and_set(identity)
        return self._finish(identity, result, is_current)

    async def _compare_and_set(self, identity: str) -> DecrementResult | None:
        attempts = self._config.max_debit_retries
        for attempt in range(1, attempts + 1):
            record = await self._gateway.read_record(identity)
            if record is None:
                return None
            if record.credits <= 0:
                return DecrementResult(credits=0, debited=False, version=record.version)
            try:
                updated = await self._gateway.update_record(
                    identity,
                    {"credits": record.credits - 1},
                    expected={"credits": record.credits},
                )
            except RecordNotFoundError:
                return None
            except ConflictError:
                _logger.debug("Debit lost a race identity=%s attempt=%d/%d", identity, attempt, attempts)
                continue
            return DecrementResult(credits=updated.credits, debited=True, version=updated.version)
        raise ConflictError(
            f"Debit for identity {identity} lost {attempts} consecutive races",
            code="conflict",
            endpoint=self._config.table,
        )

    def _finish(
        self,
        identity: str,
        result: DecrementResult | None,
        is_current: Callable[[], bool],
    ) -> DebitOutcome:
        if result is None:
            _logger.info("No subscription found when trying to decrement credits identity=%s", identity)
            return DebitOutcome.NO_RECORD
        if not is_current():
            _logger.debug("Discarding debit completion for stale identity=%s", identity)
            return DebitOutcome.DISCARDED
        if result.debited:
            outcome = DebitOutcome.APPLIED
            credits = result.credits
        else:
            _logger.info("Debit skipped, no credits left identity=%s", identity)
            outcome = DebitOutcome.EXHAUSTED
            credits = 0

        # The write's version keeps older feed echoes from rolling the replica back.
        self._store.apply(
            ReplicaUpdate(
                identity=identity,
                source=UpdateSource.DEBIT,
                version=result.version,
                data={"credits": credits},
            )
        )
        _logger.debug("Debit %s identity=%s remaining=%s", outcome, identity, credits)
        return outcome
