"""Internal MQTT runtime carrying the record change feed."""

from __future__ import annotations

import asyncio
import json
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from creditsync.config import SyncConfig
from creditsync.exceptions import CreditSyncError


@dataclass(frozen=True)
class MqttBootstrap:
    """Broker data required to connect to the change feed."""

    broker_host: str
    broker_port: int
    client_id: str
    username: str | None
    password: str | None
    tls: bool = True


@dataclass(frozen=True)
class FeedMessage:
    """Decoded change-feed message envelope."""

    topic: str
    payload: dict[str, Any]


def build_bootstrap(config: SyncConfig, identity: str) -> MqttBootstrap:
    """Build broker connection details for *identity*."""
    if not config.mqtt_host:
        raise CreditSyncError("mqtt_host is not configured")
    return MqttBootstrap(
        broker_host=config.mqtt_host,
        broker_port=config.mqtt_port,
        client_id=f"creditsync_{secrets.token_hex(6)}",
        username=config.mqtt_username or identity,
        password=config.mqtt_password or config.access_token,
        tls=config.mqtt_tls,
    )


def topic_for(prefix: str, identity: str) -> str:
    return f"{prefix.rstrip('/')}/{identity}"


def decode_feed_payload(payload: bytes) -> dict[str, Any]:
    """Parse MQTT payload bytes into a JSON object."""
    parsed = json.loads(payload.decode("utf-8"))
    if not isinstance(parsed, dict):
        raise CreditSyncError("Change-feed payload is not a JSON object")
    return parsed


class ChangeFeedRuntime:
    """Threaded paho-mqtt runtime that emits parsed messages onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_message: Callable[[FeedMessage], None],
        keepalive: int = 120,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_message = on_message
        self._keepalive = keepalive
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: set[str] = set()

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def topics(self) -> frozenset[str]:
        return frozenset(self._topics)

    def start(self, bootstrap: MqttBootstrap) -> None:
        """Connect with provided broker details (blocking; run in an executor)."""
        self.stop()
        self._logger.debug(
            "MQTT runtime start requested host=%s port=%s client_id=%s",
            bootstrap.broker_host,
            bootstrap.broker_port,
            bootstrap.client_id,
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=bootstrap.client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if bootstrap.username:
            client.username_pw_set(bootstrap.username, bootstrap.password)
        if bootstrap.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            # Re-subscribe after reconnects.
            for topic in sorted(self._topics):
                c.subscribe(topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                payload = decode_feed_payload(msg.payload)
            except Exception:
                self._logger.debug("MQTT payload parse failure topic=%s", msg.topic, exc_info=True)
                return
            self._loop.call_soon_threadsafe(self._on_message, FeedMessage(topic=msg.topic, payload=payload))

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(bootstrap.broker_host, bootstrap.broker_port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def subscribe(self, topic: str) -> None:
        self._topics.add(topic)
        client = self._client
        if client is None:
            return
        result, _mid = client.subscribe(topic, qos=1)
        if result != mqtt.MQTT_ERR_SUCCESS and result != mqtt.MQTT_ERR_NO_CONN:
            self._topics.discard(topic)
            raise CreditSyncError(f"MQTT subscribe to {topic} failed: rc={result}")

    def unsubscribe(self, topic: str) -> None:
        self._topics.discard(topic)
        client = self._client
        if client is not None:
            client.unsubscribe(topic)

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topics.clear()

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
