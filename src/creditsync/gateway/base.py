"""Remote record gateway interface.

The record store is an external collaborator: a point read, a conditional
update, and a push feed of changes scoped to one identity.  Anything that
implements :class:`RecordGateway` can back a
:class:`~creditsync.client.CreditSyncClient`.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from creditsync.models.change import ChangeEvent
from creditsync.models.record import SubscriptionRecord

ChangeHandler = Callable[[ChangeEvent], None]


@dataclass(eq=False)
class FeedHandle:
    """A live change-feed subscription.

    ``active`` flips to ``False`` the moment the subscription is closed, so
    deliveries already queued on the loop can be dropped by the receiver.
    """

    identity: str
    topic: str
    handle_id: str = field(default_factory=lambda: secrets.token_hex(8))
    active: bool = True

    def close(self) -> None:
        self.active = False


class RecordGateway(Protocol):
    async def read_record(self, identity: str) -> SubscriptionRecord | None:
        """Authoritative point read; ``None`` when no record exists."""
        ...

    async def update_record(
        self,
        identity: str,
        fields: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> SubscriptionRecord:
        """Update the record and return it.

        Raises :class:`~creditsync.exceptions.RecordNotFoundError` when no
        record exists and :class:`~creditsync.exceptions.ConflictError`
        when a column in *expected* no longer matches.
        """
        ...

    async def subscribe_changes(self, identity: str, handler: ChangeHandler) -> FeedHandle: ...

    async def unsubscribe(self, handle: FeedHandle) -> None: ...


@dataclass(frozen=True)
class DecrementResult:
    """Outcome of an atomic decrement-if-positive."""

    credits: int
    debited: bool
    version: float | None = None


@runtime_checkable
class AtomicDecrement(Protocol):
    async def decrement_credits(self, identity: str) -> DecrementResult | None:
        """Decrement-if-positive; ``None`` when no record exists.

        At zero credits the stored value is left unchanged and the result
        has ``debited=False``.  ``version`` is the row's ``updated_at`` as
        epoch seconds when the store reports it.
        """
        ...
