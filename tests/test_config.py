from __future__ import annotations

import pytest

from creditsync.config import SyncConfig
from creditsync.exceptions import SyncConfigError
from creditsync.models.record import PreferredLanguage


def test_defaults() -> None:
    config = SyncConfig()

    assert config.table == "subscriptions"
    assert config.trial_credits == 1
    assert config.default_language == PreferredLanguage.PYTHON
    assert config.max_debit_retries == 3


def test_base_url_trailing_slash_is_stripped() -> None:
    config = SyncConfig(base_url="https://db.example.com/")

    assert config.rest_url == "https://db.example.com/rest/v1"


def test_rest_url_requires_base_url() -> None:
    with pytest.raises(SyncConfigError):
        _ = SyncConfig().rest_url


@pytest.mark.parametrize(
    "kwargs",
    [
        {"trial_credits": -1},
        {"max_debit_retries": 0},
        {"request_timeout": 0},
        {"default_language": "cobol"},
    ],
)
def test_invalid_values_raise(kwargs: dict[str, object]) -> None:
    with pytest.raises(SyncConfigError):
        SyncConfig(**kwargs)  # type: ignore[arg-type]


def test_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CREDITSYNC_BASE_URL", "https://db.example.com")
    monkeypatch.setenv("CREDITSYNC_API_KEY", "anon")
    monkeypatch.setenv("CREDITSYNC_DEFAULT_LANGUAGE", "go")
    monkeypatch.setenv("CREDITSYNC_MAX_DEBIT_RETRIES", "5")
    monkeypatch.setenv("CREDITSYNC_MQTT_ENABLED", "off")
    monkeypatch.setenv("CREDITSYNC_MQTT_PORT", "1883")

    config = SyncConfig.from_env(api_key="override")

    assert config.base_url == "https://db.example.com"
    assert config.api_key == "override"
    assert config.default_language == PreferredLanguage.GOLANG
    assert config.max_debit_retries == 5
    assert config.mqtt_enabled is False
    assert config.mqtt_port == 1883


def test_from_env_rejects_bad_numbers(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CREDITSYNC_REQUEST_TIMEOUT", "soon")

    with pytest.raises(SyncConfigError):
        SyncConfig.from_env()
