from __future__ import annotations

import json
from pathlib import Path

import pytest

from linear_bridge.auth import (
    StaticTokenProvider,
    StoredTokenProvider,
    format_auth_header,
    sanitize_token,
)
from linear_bridge.errors import AuthenticationError


@pytest.mark.parametrize(
    ("token", "expected"),
    [
        ("lin_api_abc123", "lin_api_abc123"),
        ("oauth-token", "Bearer oauth-token"),
        ("Bearer oauth-token", "Bearer oauth-token"),
        ("Bearer lin_api_abc123", "lin_api_abc123"),
        ("  lin_api_abc123\n", "lin_api_abc123"),
        ("", ""),
    ],
)
def test_format_auth_header(token: str, expected: str):
    assert format_auth_header(token) == expected


def test_sanitize_token_strips_control_characters():
    assert sanitize_token("\tab\x00c\r\n") == "abc"


def test_static_provider_without_token_raises():
    with pytest.raises(AuthenticationError) as exc_info:
        StaticTokenProvider("").get_token()
    assert "LINEAR_API_KEY" in exc_info.value.message


class TestStoredTokenProvider:
    def test_reads_raw_token_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("LINEAR_API_KEY", raising=False)
        path = tmp_path / "token"
        path.write_text("lin_api_stored\n")
        assert StoredTokenProvider(str(path)).get_token() == "lin_api_stored"

    def test_reads_json_token_and_auth_mode(self, tmp_path: Path):
        path = tmp_path / "token"
        path.write_text(json.dumps({"access_token": "oauth-abc", "auth_mode": "agent"}))
        provider = StoredTokenProvider(str(path))
        assert provider.get_token() == "oauth-abc"
        assert provider.auth_mode == "agent"

    def test_falls_back_to_env(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("LINEAR_API_KEY", "lin_api_env")
        provider = StoredTokenProvider(str(tmp_path / "missing"))
        assert provider.get_token() == "lin_api_env"
        assert provider.auth_mode == ""

    def test_no_token_anywhere(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("LINEAR_API_KEY", raising=False)
        with pytest.raises(AuthenticationError):
            StoredTokenProvider(str(tmp_path / "missing")).get_token()

    def test_rereads_file_on_each_call(self, tmp_path: Path):
        path = tmp_path / "token"
        path.write_text("first")
        provider = StoredTokenProvider(str(path))
        assert provider.get_token() == "first"
        path.write_text("second")
        assert provider.get_token() == "second"
