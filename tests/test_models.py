from __future__ import annotations

from datetime import UTC, datetime

import pytest

from creditsync.models.change import ChangeEvent, ChangeKind
from creditsync.models.record import PreferredLanguage, SubscriptionRecord, parse_language


def test_language_aliases_and_case() -> None:
    assert PreferredLanguage("Go") == PreferredLanguage.GOLANG
    assert PreferredLanguage("C++") == PreferredLanguage.CPP
    assert PreferredLanguage(" PYTHON ") == PreferredLanguage.PYTHON
    assert PreferredLanguage.CPP.label == "C++"
    with pytest.raises(ValueError):
        PreferredLanguage("cobol")


def test_parse_language_is_lenient() -> None:
    assert parse_language("kotlin") == PreferredLanguage.KOTLIN
    assert parse_language("brainfuck") is None
    assert parse_language(42) is None


def test_subscription_record_normalizes_columns() -> None:
    record = SubscriptionRecord.model_validate(
        {
            "id": 17,
            "user_id": "user-a",
            "credits": -3,
            "preferred_language": "",
            "updated_at": "2024-05-01 10:00:00+00",
        }
    )

    assert record.credits == 0
    assert record.preferred_language is None
    assert record.updated_at == datetime(2024, 5, 1, 10, 0, tzinfo=UTC)
    assert record.version == record.updated_at.timestamp()
    assert record.raw["id"] == 17


def test_subscription_record_unknown_language_is_none() -> None:
    record = SubscriptionRecord.model_validate({"user_id": "u", "credits": "12", "preferred_language": "perl"})

    assert record.credits == 12
    assert record.preferred_language is None


def test_change_event_parses_postgres_changes_payload() -> None:
    event = ChangeEvent.model_validate(
        {
            "eventType": "UPDATE",
            "table": "subscriptions",
            "commit_timestamp": "2024-05-01T10:00:00.500Z",
            "new": {"user_id": "user-a", "credits": 4},
            "old": {"user_id": "user-a", "credits": 5},
        }
    )

    assert event.kind == ChangeKind.UPDATED
    assert event.user_id == "user-a"
    record = event.new_record()
    assert record is not None
    assert record.credits == 4
    # Falls back to the commit time when the row carries no updated_at.
    assert record.updated_at == event.commit_timestamp


def test_change_event_unwraps_data_envelope() -> None:
    event = ChangeEvent.model_validate(
        {
            "data": {"type": "delete", "old_record": {"user_id": "user-a"}, "record": None},
            "ref": "abc",
        }
    )

    assert event.kind == ChangeKind.DELETED
    assert event.new == {}
    assert event.user_id == "user-a"
    assert event.new_record() is None


def test_change_event_new_record_fills_identity() -> None:
    event = ChangeEvent.model_validate({"eventType": "INSERT", "new": {"credits": 50}})

    record = event.new_record("user-a")

    assert record is not None
    assert record.user_id == "user-a"
