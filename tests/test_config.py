from __future__ import annotations

import logging

import pytest

from linear_bridge.config import (
    DEFAULT_API_URL,
    DEFAULT_ATTACHMENT_TTL_SECONDS,
    DEFAULT_RESOLVER_TTL_SECONDS,
    Settings,
)

ENV_VARS = (
    "LINEAR_API_KEY",
    "LINEAR_API_URL",
    "LINEAR_TOKEN_PATH",
    "LINEAR_AUTH_MODE",
    "LINEAR_RESOLVER_TTL_SECONDS",
    "LINEAR_ATTACHMENT_TTL_SECONDS",
    "LINEAR_ATTACHMENT_SWEEP_SECONDS",
    "LINEAR_BRIDGE_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings.from_env()
    assert settings.api_key is None
    assert settings.api_url == DEFAULT_API_URL
    assert settings.resolver_ttl_seconds == DEFAULT_RESOLVER_TTL_SECONDS == 300
    assert settings.attachment_ttl_seconds == DEFAULT_ATTACHMENT_TTL_SECONDS == 1800
    assert settings.attachment_sweep_seconds == 300
    assert settings.log_level == "WARNING"
    assert not settings.token_path.startswith("~")


def test_overrides(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LINEAR_API_KEY", "lin_api_x")
    monkeypatch.setenv("LINEAR_AUTH_MODE", "agent")
    monkeypatch.setenv("LINEAR_RESOLVER_TTL_SECONDS", "60")
    monkeypatch.setenv("LINEAR_BRIDGE_LOG_LEVEL", "debug")

    settings = Settings.from_env()
    assert settings.api_key == "lin_api_x"
    assert settings.auth_mode == "agent"
    assert settings.resolver_ttl_seconds == 60
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("raw", ["soon", "0", "-5"])
def test_invalid_integers_fall_back_with_warning(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture, raw: str
):
    monkeypatch.setenv("LINEAR_ATTACHMENT_TTL_SECONDS", raw)
    with caplog.at_level(logging.WARNING, logger="linear_bridge.config"):
        settings = Settings.from_env()
    assert settings.attachment_ttl_seconds == DEFAULT_ATTACHMENT_TTL_SECONDS
    assert "LINEAR_ATTACHMENT_TTL_SECONDS" in caplog.text
