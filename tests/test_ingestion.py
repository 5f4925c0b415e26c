from __future__ import annotations

from datetime import UTC, datetime

from creditsync.ingestion.normalize import non_negative_or_zero, parse_timestamp, safe_int, version_of
from creditsync.ingestion.records import build_initial_update, build_update_from_change
from creditsync.models.change import ChangeEvent
from creditsync.models.record import PreferredLanguage, SubscriptionRecord
from creditsync.models.replica import LocalReplica
from creditsync.state.events import ReplicaUpdate, UpdateSource
from creditsync.state.store import ReplicaStore


def _event(kind: str, **payload: object) -> ChangeEvent:
    return ChangeEvent.model_validate({"eventType": kind, **payload})


def _ready_store() -> ReplicaStore:
    store = ReplicaStore()
    store.begin_session("user-a")
    store.apply(
        build_initial_update(
            "user-a",
            SubscriptionRecord(user_id="user-a", credits=5, updated_at=datetime(2024, 1, 1, tzinfo=UTC)),
            store.defaults,
        )
    )
    return store


def test_initial_update_without_record_uses_defaults() -> None:
    defaults = LocalReplica(credits=1, preferred_language=PreferredLanguage.PYTHON)

    update = build_initial_update("user-a", None, defaults)

    assert update.source == UpdateSource.INITIAL_READ
    assert update.data == {
        "is_subscribed": False,
        "credits": 1,
        "preferred_language": PreferredLanguage.PYTHON,
        "is_initialized": True,
    }


def test_initial_update_keeps_default_language_when_record_has_none() -> None:
    record = SubscriptionRecord(user_id="user-a", credits=9)
    defaults = LocalReplica(preferred_language=PreferredLanguage.RUBY)

    update = build_initial_update("user-a", record, defaults)

    assert update.data["preferred_language"] == PreferredLanguage.RUBY
    assert update.data["is_subscribed"] is True


def test_feed_application_is_idempotent() -> None:
    store = _ready_store()
    event = _event(
        "UPDATE",
        new={"user_id": "user-a", "credits": 3, "preferred_language": "java"},
        commit_timestamp="2024-01-02T00:00:00Z",
    )

    update = build_update_from_change("user-a", event)
    assert update is not None
    store.apply(update)
    once = store.replica
    store.apply(update)
    store.apply(build_update_from_change("user-a", event))  # type: ignore[arg-type]

    assert store.replica == once
    assert once.credits == 3
    assert once.preferred_language == PreferredLanguage.JAVA


def test_update_without_language_keeps_current_language() -> None:
    update = build_update_from_change("user-a", _event("UPDATE", new={"user_id": "user-a", "credits": 2}))

    assert update is not None
    assert "preferred_language" not in update.data


def test_delete_revokes_subscription() -> None:
    update = build_update_from_change(
        "user-a",
        _event("DELETE", old={"user_id": "user-a"}, commit_timestamp="2024-01-03T00:00:00Z"),
    )

    assert update is not None
    assert update.data == {"is_subscribed": False, "credits": 0}
    assert update.version == datetime(2024, 1, 3, tzinfo=UTC).timestamp()


def test_change_of_other_identity_is_ignored() -> None:
    event = _event("UPDATE", new={"user_id": "user-b", "credits": 50})

    assert build_update_from_change("user-a", event) is None


def test_change_without_snapshot_is_ignored() -> None:
    assert build_update_from_change("user-a", _event("UPDATE")) is None


def test_older_feed_snapshot_does_not_override_newer_write() -> None:
    store = _ready_store()
    store.apply(
        ReplicaUpdate(
            identity="user-a",
            source=UpdateSource.DEBIT,
            version=datetime(2024, 1, 5, tzinfo=UTC).timestamp(),
            data={"credits": 4},
        )
    )
    late = _event(
        "UPDATE",
        new={"user_id": "user-a", "credits": 5, "updated_at": "2024-01-02T00:00:00Z"},
    )

    store.apply(build_update_from_change("user-a", late))  # type: ignore[arg-type]

    assert store.replica.credits == 4


def test_normalize_helpers() -> None:
    assert safe_int("7.9") == 7
    assert safe_int(True) is None
    assert non_negative_or_zero(-2) == 0
    assert parse_timestamp(1_714_557_600_000) == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)
    assert parse_timestamp("not a date") is None
    assert version_of("2024-05-01T10:00:00Z") == datetime(2024, 5, 1, 10, 0, tzinfo=UTC).timestamp()
