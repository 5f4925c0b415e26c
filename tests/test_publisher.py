from __future__ import annotations

import threading

from creditsync import publisher
from creditsync.models.record import PreferredLanguage
from creditsync.models.replica import LocalReplica
from creditsync.publisher import PublishedState, SnapshotCell


def test_cell_starts_with_defaults() -> None:
    cell = SnapshotCell()

    assert cell.read() == PublishedState(credits=1, preferred_language=PreferredLanguage.PYTHON, is_initialized=False)


def test_publish_replica_swaps_snapshot() -> None:
    cell = SnapshotCell()
    before = cell.read()

    cell.publish_replica(
        LocalReplica(is_subscribed=True, credits=42, preferred_language=PreferredLanguage.SWIFT, is_initialized=True)
    )

    assert before.credits == 1
    assert cell.read().credits == 42
    assert cell.read().preferred_language == PreferredLanguage.SWIFT
    cell.reset()
    assert cell.read() == before


def test_readers_in_other_threads_see_latest_snapshot() -> None:
    cell = publisher.shared_cell()
    cell.publish(PublishedState(credits=17, is_initialized=True))
    seen: list[PublishedState] = []
    try:
        thread = threading.Thread(target=lambda: seen.append(publisher.read_published()))
        thread.start()
        thread.join()

        assert seen[0].credits == 17
        assert publisher.read_credits() == 17
        assert publisher.read_is_initialized() is True
        assert publisher.read_language() == PreferredLanguage.PYTHON
    finally:
        cell.reset()
