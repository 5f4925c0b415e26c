"""Cross-context publisher.

Mirrors replica fields into a process-wide cell that collaborators running
in another execution context (a host thread, a synchronous callback) can
read without awaiting anything.

The cell has one writer, the :class:`~creditsync.state.store.ReplicaStore`
listener installed by the client, and any number of readers.  Each write
swaps in a new frozen snapshot, so readers never observe a torn value and
no lock is needed.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from creditsync._constants import TRIAL_CREDITS
from creditsync.models.record import PreferredLanguage
from creditsync.models.replica import LocalReplica


class PublishedState(BaseModel):
    """Immutable snapshot visible to synchronous readers."""

    model_config = ConfigDict(frozen=True)

    credits: int = Field(default=TRIAL_CREDITS, ge=0)
    preferred_language: PreferredLanguage = PreferredLanguage.PYTHON
    is_initialized: bool = False

    @classmethod
    def from_replica(cls, replica: LocalReplica) -> PublishedState:
        return cls(
            credits=replica.credits,
            preferred_language=replica.preferred_language,
            is_initialized=replica.is_initialized,
        )


class SnapshotCell:
    """Single-writer broadcast cell holding the latest snapshot only."""

    __slots__ = ("_default", "_snapshot")

    def __init__(self, default: PublishedState | None = None) -> None:
        self._default = default or PublishedState()
        self._snapshot = self._default

    def read(self) -> PublishedState:
        return self._snapshot

    def publish(self, snapshot: PublishedState) -> None:
        self._snapshot = snapshot

    def publish_replica(self, replica: LocalReplica) -> None:
        self._snapshot = PublishedState.from_replica(replica)

    def reset(self) -> None:
        self._snapshot = self._default


_CELL = SnapshotCell()


def shared_cell() -> SnapshotCell:
    """The process-wide cell."""
    return _CELL


def read_published() -> PublishedState:
    """Latest published snapshot; safe to call from any thread."""
    return _CELL.read()


def read_credits() -> int:
    return _CELL.read().credits


def read_language() -> PreferredLanguage:
    return _CELL.read().preferred_language


def read_is_initialized() -> bool:
    return _CELL.read().is_initialized
