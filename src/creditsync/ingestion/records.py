"""Record and change-event ingestion.

Translates authoritative reads, write-backs and change-feed events into
:class:`~creditsync.state.events.ReplicaUpdate` patches.  Every patch is an
idempotent "set": applying it twice leaves the replica unchanged.
"""

from __future__ import annotations

import logging

from pydantic import ValidationError

from creditsync.ingestion.normalize import version_of
from creditsync.models.change import ChangeEvent, ChangeKind
from creditsync.models.record import SubscriptionRecord
from creditsync.models.replica import LocalReplica
from creditsync.state.events import ReplicaUpdate, UpdateSource

_logger = logging.getLogger(__name__)


def build_initial_update(
    identity: str,
    record: SubscriptionRecord | None,
    defaults: LocalReplica,
) -> ReplicaUpdate:
    """Patch for the first authoritative read of a session.

    A missing record is a valid state: not subscribed, trial credits and
    the default language.
    """
    if record is None:
        data = {
            "is_subscribed": False,
            "credits": defaults.credits,
            "preferred_language": defaults.preferred_language,
            "is_initialized": True,
        }
        return ReplicaUpdate(identity=identity, source=UpdateSource.INITIAL_READ, data=data)

    return ReplicaUpdate(
        identity=identity,
        source=UpdateSource.INITIAL_READ,
        version=record.version,
        data={
            "is_subscribed": True,
            "credits": record.credits,
            "preferred_language": record.preferred_language or defaults.preferred_language,
            "is_initialized": True,
        },
    )


def build_record_update(identity: str, record: SubscriptionRecord, source: UpdateSource) -> ReplicaUpdate:
    """Patch for a record returned by one of our own writes."""
    data: dict[str, object] = {"is_subscribed": True, "credits": record.credits}
    if record.preferred_language is not None:
        data["preferred_language"] = record.preferred_language
    return ReplicaUpdate(identity=identity, source=source, version=record.version, data=data)


def build_update_from_change(identity: str, event: ChangeEvent) -> ReplicaUpdate | None:
    """Translate a change-feed event for *identity*; ``None`` when it does not apply."""
    owner = event.user_id
    if owner is not None and owner != identity:
        _logger.warning("Ignoring %s change for identity=%s on feed of %s", event.kind, owner, identity)
        return None

    version = version_of(event.commit_timestamp)

    if event.kind == ChangeKind.DELETED:
        return ReplicaUpdate(
            identity=identity,
            source=UpdateSource.FEED,
            version=version,
            data={"is_subscribed": False, "credits": 0},
        )

    try:
        record = event.new_record(identity)
    except ValidationError:
        _logger.debug("Invalid %s snapshot for identity=%s", event.kind, identity, exc_info=True)
        return None
    if record is None:
        _logger.debug("%s change without a new snapshot for identity=%s", event.kind, identity)
        return None

    data: dict[str, object] = {"credits": record.credits}
    if record.preferred_language is not None:
        data["preferred_language"] = record.preferred_language
    # An inserted or updated row means the record exists.
    data["is_subscribed"] = True
    return ReplicaUpdate(
        identity=identity,
        source=UpdateSource.FEED,
        version=record.version if record.version is not None else version,
        data=data,
    )
