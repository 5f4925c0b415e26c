from __future__ import annotations

from typing import Any

import pytest

from creditsync._mqtt import FeedMessage, MqttBootstrap, build_bootstrap, decode_feed_payload
from creditsync.config import SyncConfig
from creditsync.exceptions import CreditSyncError, SubscriptionSetupError
from creditsync.gateway import feed as feed_module
from creditsync.gateway.feed import MqttChangeFeed
from creditsync.models.change import ChangeEvent, ChangeKind


class _FakeRuntime:
    instances: list[_FakeRuntime] = []

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.bootstrap: MqttBootstrap | None = None
        self.topics: set[str] = set()
        self.running = False
        self.fail_subscribe = False
        _FakeRuntime.instances.append(self)

    @property
    def is_running(self) -> bool:
        return self.running

    def start(self, bootstrap: MqttBootstrap) -> None:
        self.bootstrap = bootstrap
        self.running = True

    def subscribe(self, topic: str) -> None:
        self.topics.add(topic)

    def unsubscribe(self, topic: str) -> None:
        self.topics.discard(topic)

    def stop(self) -> None:
        self.running = False
        self.topics.clear()


@pytest.fixture
def fake_runtime(monkeypatch: pytest.MonkeyPatch) -> type[_FakeRuntime]:
    _FakeRuntime.instances = []
    monkeypatch.setattr(feed_module, "ChangeFeedRuntime", _FakeRuntime)
    return _FakeRuntime


def _config(**kwargs: Any) -> SyncConfig:
    return SyncConfig(mqtt_host="broker.example.com", access_token="jwt", **kwargs)


def _payload(user_id: str, credits: int) -> dict[str, Any]:
    return {"eventType": "UPDATE", "new": {"user_id": user_id, "credits": credits}, "old": {}}


@pytest.mark.asyncio
async def test_subscribe_starts_runtime_and_routes_messages(fake_runtime: type[_FakeRuntime]) -> None:
    feed = MqttChangeFeed(_config())
    received: list[ChangeEvent] = []

    handle = await feed.subscribe("user-a", received.append)
    feed._on_message(FeedMessage(topic="subscriptions/user-a", payload=_payload("user-a", 3)))  # type: ignore[attr-defined]

    runtime = fake_runtime.instances[0]
    assert runtime.topics == {"subscriptions/user-a"}
    assert runtime.bootstrap is not None
    assert runtime.bootstrap.username == "user-a"
    assert runtime.bootstrap.password == "jwt"
    assert handle.topic == "subscriptions/user-a"
    assert [event.kind for event in received] == [ChangeKind.UPDATED]


@pytest.mark.asyncio
async def test_unsubscribe_stops_delivery_and_runtime(fake_runtime: type[_FakeRuntime]) -> None:
    feed = MqttChangeFeed(_config())
    received: list[ChangeEvent] = []
    handle = await feed.subscribe("user-a", received.append)

    await feed.unsubscribe(handle)
    feed._on_message(FeedMessage(topic="subscriptions/user-a", payload=_payload("user-a", 3)))  # type: ignore[attr-defined]

    assert received == []
    assert handle.active is False
    assert feed.live_handles == []
    assert fake_runtime.instances[0].running is False


@pytest.mark.asyncio
async def test_duplicate_subscription_is_rejected(fake_runtime: type[_FakeRuntime]) -> None:
    feed = MqttChangeFeed(_config())
    await feed.subscribe("user-a", lambda _event: None)

    with pytest.raises(SubscriptionSetupError):
        await feed.subscribe("user-a", lambda _event: None)


@pytest.mark.asyncio
async def test_missing_broker_host_fails_setup(fake_runtime: type[_FakeRuntime]) -> None:
    feed = MqttChangeFeed(SyncConfig())

    with pytest.raises(SubscriptionSetupError):
        await feed.subscribe("user-a", lambda _event: None)


@pytest.mark.asyncio
async def test_unparseable_events_and_handler_errors_are_contained(fake_runtime: type[_FakeRuntime]) -> None:
    feed = MqttChangeFeed(_config())

    def broken(_event: ChangeEvent) -> None:
        raise RuntimeError("handler bug")

    await feed.subscribe("user-a", broken)
    feed._on_message(FeedMessage(topic="subscriptions/user-a", payload={"eventType": "TRUNCATE"}))  # type: ignore[attr-defined]
    feed._on_message(FeedMessage(topic="subscriptions/user-a", payload=_payload("user-a", 1)))  # type: ignore[attr-defined]
    await feed.close()


def test_bootstrap_prefers_explicit_credentials() -> None:
    bootstrap = build_bootstrap(_config(mqtt_username="svc", mqtt_password="secret", mqtt_port=1883), "user-a")

    assert bootstrap.username == "svc"
    assert bootstrap.password == "secret"
    assert bootstrap.broker_port == 1883
    assert bootstrap.client_id.startswith("creditsync_")


def test_decode_feed_payload_requires_object() -> None:
    assert decode_feed_payload(b'{"eventType": "DELETE"}') == {"eventType": "DELETE"}
    with pytest.raises(CreditSyncError):
        decode_feed_payload(b"[1, 2]")
