"""Client configuration for creditsync."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from creditsync._constants import DEFAULT_TABLE, DEFAULT_TOPIC_PREFIX, TRIAL_CREDITS
from creditsync.exceptions import SyncConfigError
from creditsync.models.record import PreferredLanguage


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_number(env_key: str, value: str, kind: type[int] | type[float]) -> int | float:
    try:
        return kind(value)
    except ValueError as exc:
        raise SyncConfigError(f"{env_key} must be a {kind.__name__}, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Client configuration.

    Parameters
    ----------
    base_url : str
        Record store base URL (PostgREST style, ``<base_url>/rest/v1``).
    api_key : str
        Project API key sent as ``apikey`` header.
    access_token : str or None
        Bearer token of the signed-in user.  Falls back to *api_key*.
    table : str
        Name of the subscription table.
    trial_credits : int
        Credits reported for an identity without a subscription record.
    default_language : PreferredLanguage
        Language reported when the record has none.
    request_timeout : float
        Total timeout for a single gateway request, in seconds.
    max_debit_retries : int
        Compare-and-set attempts before a debit gives up with
        :class:`~creditsync.exceptions.ConflictError`.
    prefer_atomic_debit : bool
        Use the gateway's decrement primitive when it provides one.
    version_check : bool
        Reject feed snapshots strictly older than the cached one.
    mqtt_enabled : bool
        Enable the MQTT change feed.  When disabled, subscriptions are
        no-op handles and the replica only changes through local writes.
    mqtt_host : str
        Broker host of the change feed.
    mqtt_port : int
        Broker port.
    mqtt_tls : bool
        Wrap the broker connection in TLS.
    mqtt_username : str or None
        Broker username.  Defaults to the signed-in identity.
    mqtt_password : str or None
        Broker password.  Defaults to *access_token*.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_topic_prefix : str
        Change events for identity ``X`` are published on
        ``<prefix>/<X>``.
    api_trace_enabled : bool
        Log redacted request/response bodies at DEBUG level.
    """

    base_url: str = ""
    api_key: str = ""
    access_token: str | None = None
    table: str = DEFAULT_TABLE
    trial_credits: int = TRIAL_CREDITS
    default_language: PreferredLanguage = PreferredLanguage.PYTHON
    request_timeout: float = 10.0
    max_debit_retries: int = 3
    prefer_atomic_debit: bool = True
    version_check: bool = True
    mqtt_enabled: bool = True
    mqtt_host: str = ""
    mqtt_port: int = 8883
    mqtt_tls: bool = True
    mqtt_username: str | None = None
    mqtt_password: str | None = None
    mqtt_keepalive: int = 120
    mqtt_topic_prefix: str = DEFAULT_TOPIC_PREFIX
    api_trace_enabled: bool = False

    def __post_init__(self) -> None:
        if self.trial_credits < 0:
            raise SyncConfigError("trial_credits must be >= 0")
        if self.max_debit_retries < 1:
            raise SyncConfigError("max_debit_retries must be >= 1")
        if self.request_timeout <= 0:
            raise SyncConfigError("request_timeout must be positive")
        if not isinstance(self.default_language, PreferredLanguage):
            try:
                language = PreferredLanguage(self.default_language)
            except ValueError as exc:
                raise SyncConfigError(f"Unsupported default_language {self.default_language!r}") from exc
            object.__setattr__(self, "default_language", language)
        object.__setattr__(self, "base_url", self.base_url.rstrip("/"))

    @property
    def rest_url(self) -> str:
        """Base URL of the REST record endpoint."""
        if not self.base_url:
            raise SyncConfigError("base_url is not configured")
        return f"{self.base_url}/rest/v1"

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from environment variables.

        Reads ``CREDITSYNC_*`` variables.  Explicit keyword arguments
        override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        SyncConfig
            Populated configuration.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "CREDITSYNC_BASE_URL": "base_url",
            "CREDITSYNC_API_KEY": "api_key",
            "CREDITSYNC_ACCESS_TOKEN": "access_token",
            "CREDITSYNC_TABLE": "table",
            "CREDITSYNC_DEFAULT_LANGUAGE": "default_language",
            "CREDITSYNC_MQTT_HOST": "mqtt_host",
            "CREDITSYNC_MQTT_TOPIC_PREFIX": "mqtt_topic_prefix",
            "CREDITSYNC_MQTT_USERNAME": "mqtt_username",
            "CREDITSYNC_MQTT_PASSWORD": "mqtt_password",
        }
        config_kwargs: dict[str, Any] = {}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_NUMERIC_MAP: dict[str, tuple[str, type[int] | type[float]]] = {
            "CREDITSYNC_TRIAL_CREDITS": ("trial_credits", int),
            "CREDITSYNC_REQUEST_TIMEOUT": ("request_timeout", float),
            "CREDITSYNC_MAX_DEBIT_RETRIES": ("max_debit_retries", int),
            "CREDITSYNC_MQTT_PORT": ("mqtt_port", int),
            "CREDITSYNC_MQTT_KEEPALIVE": ("mqtt_keepalive", int),
        }
        for env_key, (field_name, kind) in _ENV_NUMERIC_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_number(env_key, val, kind)

        _ENV_BOOL_MAP = {
            "CREDITSYNC_PREFER_ATOMIC_DEBIT": ("prefer_atomic_debit", True),
            "CREDITSYNC_VERSION_CHECK": ("version_check", True),
            "CREDITSYNC_MQTT_ENABLED": ("mqtt_enabled", True),
            "CREDITSYNC_MQTT_TLS": ("mqtt_tls", True),
            "CREDITSYNC_API_TRACE_ENABLED": ("api_trace_enabled", False),
        }
        for env_key, (field_name, default) in _ENV_BOOL_MAP.items():
            if field_name not in overrides:
                config_kwargs[field_name] = _env_bool(env.get(env_key), default)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
