"""Custom exception hierarchy for creditsync."""

from __future__ import annotations


class CreditSyncError(Exception):
    """Base exception for all creditsync errors."""


class SyncConfigError(CreditSyncError):
    """Invalid or missing configuration."""


class NetworkError(CreditSyncError):
    """Transient gateway failure (network, timeout, 5xx, invalid JSON).

    Callers may retry; the replica is never defaulted because of it.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class GatewayError(CreditSyncError):
    """The record store rejected a request (application-level error)."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class RecordNotFoundError(GatewayError):
    """No subscription record exists for the identity.

    A valid state during initialization; inside the debit path it means
    "abort, nothing to do".
    """


class ConflictError(GatewayError):
    """A conditional update lost a race against a concurrent writer.

    Raised by the debit once its bounded compare-and-set retries are
    exhausted.
    """


class SubscriptionSetupError(CreditSyncError):
    """The change feed subscription could not be established."""


class NotInitializedError(CreditSyncError):
    """Operation requires an active identity session."""
