"""MQTT-backed change feed."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from creditsync._mqtt import ChangeFeedRuntime, FeedMessage, build_bootstrap, topic_for
from creditsync.config import SyncConfig
from creditsync.exceptions import SubscriptionSetupError
from creditsync.gateway.base import ChangeHandler, FeedHandle
from creditsync.models.change import ChangeEvent

_logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Subscription:
    handle: FeedHandle
    handler: ChangeHandler


class MqttChangeFeed:
    """Delivers record changes published on ``<prefix>/<identity>``.

    One broker connection is shared by every subscription of this feed; it
    is opened on the first subscribe and closed with the last unsubscribe.
    """

    def __init__(self, config: SyncConfig, *, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._config = config
        self._loop = loop
        self._runtime: ChangeFeedRuntime | None = None
        self._subscriptions: dict[str, _Subscription] = {}

    @property
    def live_handles(self) -> list[FeedHandle]:
        return [sub.handle for sub in self._subscriptions.values() if sub.handle.active]

    async def subscribe(self, identity: str, handler: ChangeHandler) -> FeedHandle:
        topic = topic_for(self._config.mqtt_topic_prefix, identity)
        if topic in self._subscriptions:
            raise SubscriptionSetupError(f"Already subscribed to {topic}")
        loop = self._loop or asyncio.get_running_loop()
        try:
            if self._runtime is None or not self._runtime.is_running:
                runtime = ChangeFeedRuntime(
                    loop=loop,
                    on_message=self._on_message,
                    keepalive=self._config.mqtt_keepalive,
                    logger=_logger,
                )
                await loop.run_in_executor(None, runtime.start, build_bootstrap(self._config, identity))
                self._runtime = runtime
            await loop.run_in_executor(None, self._runtime.subscribe, topic)
        except Exception as exc:
            raise SubscriptionSetupError(f"Change feed subscribe for {identity} failed: {exc}") from exc

        handle = FeedHandle(identity=identity, topic=topic)
        self._subscriptions[topic] = _Subscription(handle=handle, handler=handler)
        _logger.debug("Change feed subscribed topic=%s handle=%s", topic, handle.handle_id)
        return handle

    async def unsubscribe(self, handle: FeedHandle) -> None:
        handle.close()
        current = self._subscriptions.get(handle.topic)
        if current is None or current.handle is not handle:
            return
        del self._subscriptions[handle.topic]
        runtime = self._runtime
        if runtime is None:
            return
        loop = self._loop or asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, runtime.unsubscribe, handle.topic)
            if not self._subscriptions:
                self._runtime = None
                await loop.run_in_executor(None, runtime.stop)
        except Exception:
            _logger.debug("Change feed unsubscribe failed topic=%s", handle.topic, exc_info=True)
        _logger.debug("Change feed unsubscribed topic=%s handle=%s", handle.topic, handle.handle_id)

    async def close(self) -> None:
        for sub in list(self._subscriptions.values()):
            await self.unsubscribe(sub.handle)
        runtime = self._runtime
        self._runtime = None
        if runtime is not None:
            runtime.stop()

    def _on_message(self, message: FeedMessage) -> None:
        sub = self._subscriptions.get(message.topic)
        if sub is None or not sub.handle.active:
            _logger.debug("Dropping change for closed topic=%s", message.topic)
            return
        try:
            event = ChangeEvent.model_validate(message.payload)
        except ValidationError:
            _logger.debug("Unparseable change event topic=%s", message.topic, exc_info=True)
            return
        try:
            sub.handler(event)
        except Exception:
            _logger.warning("Change handler failed topic=%s", message.topic, exc_info=True)
