"""Remote record gateway implementations."""

from creditsync.gateway.base import (
    AtomicDecrement,
    ChangeHandler,
    DecrementResult,
    FeedHandle,
    RecordGateway,
)
from creditsync.gateway.feed import MqttChangeFeed
from creditsync.gateway.rest import HttpRecordGateway

__all__ = [
    "AtomicDecrement",
    "ChangeHandler",
    "DecrementResult",
    "FeedHandle",
    "HttpRecordGateway",
    "MqttChangeFeed",
    "RecordGateway",
]
