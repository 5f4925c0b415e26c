from __future__ import annotations

import asyncio
from collections.abc import Mapping
from enum import Enum
from typing import Any

import pytest

from creditsync.exceptions import ConflictError, RecordNotFoundError
from creditsync.gateway.base import ChangeHandler, DecrementResult, FeedHandle
from creditsync.models.change import ChangeEvent
from creditsync.models.record import SubscriptionRecord


class FakeGateway:
    """In-memory record store with a push feed.

    Writes emit their own change events, delivered on the next loop
    iteration the way a network feed would.
    """

    def __init__(self, records: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        self.records: dict[str, dict[str, Any]] = {}
        self.clock = 1_700_000_000.0
        for identity, row in (records or {}).items():
            self.seed(identity, **row)
        self.subscriptions: list[tuple[FeedHandle, ChangeHandler]] = []
        self.subscribe_calls = 0
        self.reads = 0
        self.updates: list[tuple[str, dict[str, Any], dict[str, Any] | None]] = []
        self.read_error: Exception | None = None
        self.update_error: Exception | None = None
        self.subscribe_error: Exception | None = None
        self.conflicts_to_inject = 0
        self.read_gate: asyncio.Event | None = None

    def _tick(self) -> float:
        self.clock += 1.0
        return self.clock

    def seed(self, identity: str, **fields: Any) -> None:
        row = {"user_id": identity, "credits": 1, "preferred_language": "python"}
        row.update(fields)
        row.setdefault("updated_at", self._tick())
        self.records[identity] = row

    @property
    def live_identities(self) -> list[str]:
        return [handle.identity for handle, _ in self.subscriptions if handle.active]

    def handler_for(self, identity: str) -> ChangeHandler:
        for handle, handler in self.subscriptions:
            if handle.identity == identity:
                return handler
        raise LookupError(identity)

    def emit(
        self,
        identity: str,
        kind: str,
        *,
        new: Mapping[str, Any] | None = None,
        old: Mapping[str, Any] | None = None,
        commit_timestamp: float | None = None,
    ) -> ChangeEvent:
        event = ChangeEvent.model_validate(
            {
                "eventType": kind,
                "table": "subscriptions",
                "new": dict(new or {}),
                "old": dict(old or {}),
                "commit_timestamp": commit_timestamp if commit_timestamp is not None else self.clock,
            }
        )
        loop = asyncio.get_running_loop()
        for handle, handler in list(self.subscriptions):
            if handle.identity == identity:
                loop.call_soon(handler, event)
        return event

    def external_update(self, identity: str, **fields: Any) -> None:
        """A write made by another client or by billing."""
        old = dict(self.records[identity])
        row = self.records[identity]
        row.update(fields)
        row["updated_at"] = self._tick()
        self.emit(identity, "UPDATE", new=row, old=old)

    def external_insert(self, identity: str, **fields: Any) -> None:
        self.seed(identity, **fields)
        self.emit(identity, "INSERT", new=self.records[identity])

    def external_delete(self, identity: str) -> None:
        old = self.records.pop(identity)
        self._tick()
        self.emit(identity, "DELETE", old={"user_id": identity, "credits": old["credits"]})

    async def read_record(self, identity: str) -> SubscriptionRecord | None:
        self.reads += 1
        row = self.records.get(identity)
        snapshot = dict(row) if row is not None else None
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.read_error is not None:
            raise self.read_error
        if snapshot is None:
            return None
        return SubscriptionRecord.model_validate(snapshot)

    async def update_record(
        self,
        identity: str,
        fields: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> SubscriptionRecord:
        self.updates.append((identity, dict(fields), dict(expected) if expected is not None else None))
        await asyncio.sleep(0)
        if self.update_error is not None:
            raise self.update_error
        row = self.records.get(identity)
        if row is None:
            raise RecordNotFoundError(f"no record for {identity}", code="not_found", endpoint="subscriptions")
        if self.conflicts_to_inject:
            self.conflicts_to_inject -= 1
            # Someone else debited in between.
            row["credits"] = max(row["credits"] - 1, 0)
            row["updated_at"] = self._tick()
        for column, value in (expected or {}).items():
            if row.get(column) != value:
                raise ConflictError("guard failed", code="conflict", endpoint="subscriptions")
        old = dict(row)
        row.update({key: value.value if isinstance(value, Enum) else value for key, value in fields.items()})
        row["updated_at"] = self._tick()
        self.emit(identity, "UPDATE", new=row, old=old)
        return SubscriptionRecord.model_validate(row)

    async def subscribe_changes(self, identity: str, handler: ChangeHandler) -> FeedHandle:
        self.subscribe_calls += 1
        await asyncio.sleep(0)
        if self.subscribe_error is not None:
            raise self.subscribe_error
        handle = FeedHandle(identity=identity, topic=f"subscriptions/{identity}")
        self.subscriptions.append((handle, handler))
        return handle

    async def unsubscribe(self, handle: FeedHandle) -> None:
        handle.close()
        await asyncio.sleep(0)
        self.subscriptions = [(h, fn) for h, fn in self.subscriptions if h is not handle]


class AtomicFakeGateway(FakeGateway):
    """Fake store that also offers the decrement-if-positive primitive."""

    def __init__(self, records: Mapping[str, Mapping[str, Any]] | None = None) -> None:
        super().__init__(records)
        self.decrements = 0
        self.decrement_error: Exception | None = None
        self.decrement_gate: asyncio.Event | None = None

    async def decrement_credits(self, identity: str) -> DecrementResult | None:
        self.decrements += 1
        if self.decrement_gate is not None:
            await self.decrement_gate.wait()
        if self.decrement_error is not None:
            raise self.decrement_error
        row = self.records.get(identity)
        if row is None:
            return None
        if row["credits"] <= 0:
            return DecrementResult(credits=0, debited=False, version=row["updated_at"])
        old = dict(row)
        row["credits"] -= 1
        row["updated_at"] = self._tick()
        self.emit(identity, "UPDATE", new=row, old=old)
        return DecrementResult(credits=row["credits"], debited=True, version=row["updated_at"])


async def drain(rounds: int = 10) -> None:
    """Let queued feed deliveries and scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def atomic_gateway() -> AtomicFakeGateway:
    return AtomicFakeGateway()
