"""creditsync - Client-side sync of a user's subscription and usage credits."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("creditsync")
except PackageNotFoundError:
    __version__ = "0+local"
from creditsync.access import AccessState, resolve_access
from creditsync.client import CreditSyncClient
from creditsync.config import SyncConfig
from creditsync.exceptions import (
    ConflictError,
    CreditSyncError,
    GatewayError,
    NetworkError,
    NotInitializedError,
    RecordNotFoundError,
    SubscriptionSetupError,
    SyncConfigError,
)
from creditsync.gateway import (
    AtomicDecrement,
    DecrementResult,
    FeedHandle,
    HttpRecordGateway,
    MqttChangeFeed,
    RecordGateway,
)
from creditsync.models import (
    ChangeEvent,
    ChangeKind,
    DebitOutcome,
    LifecyclePhase,
    LocalReplica,
    Notice,
    NoticeVariant,
    PreferredLanguage,
    SubscriptionRecord,
)
from creditsync.publisher import PublishedState, read_published

__all__ = [
    "__version__",
    "AccessState",
    "AtomicDecrement",
    "ChangeEvent",
    "ChangeKind",
    "ConflictError",
    "CreditSyncClient",
    "CreditSyncError",
    "DebitOutcome",
    "DecrementResult",
    "FeedHandle",
    "GatewayError",
    "HttpRecordGateway",
    "LifecyclePhase",
    "LocalReplica",
    "MqttChangeFeed",
    "NetworkError",
    "Notice",
    "NoticeVariant",
    "NotInitializedError",
    "PreferredLanguage",
    "PublishedState",
    "RecordGateway",
    "RecordNotFoundError",
    "SubscriptionRecord",
    "SubscriptionSetupError",
    "SyncConfig",
    "SyncConfigError",
    "read_published",
    "resolve_access",
]
