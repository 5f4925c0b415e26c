"""REST implementation of the record gateway.

Reads and writes go to a PostgREST-style endpoint::

    GET   /rest/v1/subscriptions?user_id=eq.<id>&select=*
    PATCH /rest/v1/subscriptions?user_id=eq.<id>[&credits=eq.<n>]
    POST  /rest/v1/rpc/decrement_credits  {"p_user_id": "<id>"}

Change notifications are delegated to a :class:`MqttChangeFeed`.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import ValidationError

from creditsync._constants import DECREMENT_RPC
from creditsync._transport import Transport
from creditsync.config import SyncConfig
from creditsync.exceptions import ConflictError, GatewayError, RecordNotFoundError
from creditsync.gateway.base import ChangeHandler, DecrementResult, FeedHandle
from creditsync.gateway.feed import MqttChangeFeed
from creditsync.ingestion.normalize import safe_int, version_of
from creditsync.models.record import SubscriptionRecord

_logger = logging.getLogger(__name__)


def _eq(value: Any) -> str:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    return f"eq.{value}"


def _encode_fields(fields: Mapping[str, Any]) -> dict[str, Any]:
    return {key: value.value if isinstance(value, Enum) else value for key, value in fields.items()}


class HttpRecordGateway:
    """Record gateway over HTTP with an optional MQTT change feed."""

    def __init__(
        self,
        config: SyncConfig,
        transport: Transport,
        *,
        feed: MqttChangeFeed | None = None,
    ) -> None:
        self._config = config
        self._transport = transport
        self._feed = feed

    @property
    def feed(self) -> MqttChangeFeed | None:
        return self._feed

    def _parse_rows(self, endpoint: str, decoded: Any) -> list[SubscriptionRecord]:
        rows = decoded if isinstance(decoded, list) else [decoded] if isinstance(decoded, dict) else []
        records: list[SubscriptionRecord] = []
        for row in rows:
            try:
                records.append(SubscriptionRecord.model_validate(row))
            except ValidationError as exc:
                raise GatewayError(
                    f"{endpoint} returned an invalid record: {exc}",
                    code="invalid_record",
                    endpoint=endpoint,
                ) from exc
        return records

    async def read_record(self, identity: str) -> SubscriptionRecord | None:
        endpoint = self._config.table
        decoded = await self._transport.request(
            "GET",
            endpoint,
            params={"user_id": _eq(identity), "select": "*"},
        )
        records = self._parse_rows(endpoint, decoded)
        if not records:
            return None
        if len(records) > 1:
            _logger.warning("Multiple subscription rows for identity=%s; using the first", identity)
        return records[0]

    async def update_record(
        self,
        identity: str,
        fields: Mapping[str, Any],
        *,
        expected: Mapping[str, Any] | None = None,
    ) -> SubscriptionRecord:
        endpoint = self._config.table
        params = {"user_id": _eq(identity)}
        for column, value in (expected or {}).items():
            params[column] = _eq(value)

        decoded = await self._transport.request(
            "PATCH",
            endpoint,
            params=params,
            body=_encode_fields(fields),
            prefer="return=representation",
        )
        records = self._parse_rows(endpoint, decoded)
        if records:
            return records[0]

        # Zero rows matched: either the record is gone or a guard failed.
        if expected and await self.read_record(identity) is not None:
            raise ConflictError(
                f"Conditional update of {endpoint} lost a race for identity {identity}",
                code="conflict",
                endpoint=endpoint,
            )
        raise RecordNotFoundError(
            f"No {endpoint} record for identity {identity}",
            code="not_found",
            endpoint=endpoint,
        )

    async def decrement_credits(self, identity: str) -> DecrementResult | None:
        """Call the ``decrement_credits`` RPC.

        The function returns ``{"credits": n, "debited": bool, "updated_at": ts}``
        (or a list holding that row), and ``null`` when the identity has no
        record.
        """
        endpoint = f"rpc/{DECREMENT_RPC}"
        decoded = await self._transport.request("POST", endpoint, body={"p_user_id": identity})
        if isinstance(decoded, list):
            decoded = decoded[0] if decoded else None
        if decoded is None:
            return None
        if isinstance(decoded, dict):
            credits = safe_int(decoded.get("credits"))
            if credits is None:
                return None
            return DecrementResult(
                credits=max(credits, 0),
                debited=bool(decoded.get("debited", True)),
                version=version_of(decoded.get("updated_at")),
            )
        credits = safe_int(decoded)
        if credits is None:
            raise GatewayError(f"{endpoint} returned {decoded!r}", code="invalid_result", endpoint=endpoint)
        # A bare number is the post-decrement balance.
        return DecrementResult(credits=max(credits, 0), debited=True)

    async def subscribe_changes(self, identity: str, handler: ChangeHandler) -> FeedHandle:
        if self._feed is None:
            # No push channel: an inert handle keeps the lifecycle uniform.
            _logger.debug("Change feed disabled; inert subscription for identity=%s", identity)
            return FeedHandle(identity=identity, topic="")
        return await self._feed.subscribe(identity, handler)

    async def unsubscribe(self, handle: FeedHandle) -> None:
        if self._feed is None:
            handle.close()
            return
        await self._feed.unsubscribe(handle)

    async def close(self) -> None:
        if self._feed is not None:
            await self._feed.close()
