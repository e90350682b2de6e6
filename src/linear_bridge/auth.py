"""
Bearer-token providers and Authorization header formatting.
"""

from __future__ import annotations

import json
import logging
import os
import unicodedata
from typing import Protocol

from .errors import AuthenticationError

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "lin_api_"
REAUTH_HINT = "run 'linear auth login' or set LINEAR_API_KEY"


class TokenProvider(Protocol):
    def get_token(self) -> str: ...


def sanitize_token(token: str) -> str:
    """Strip whitespace and control characters picked up from files or env."""
    token = token.strip()
    return "".join(
        ch for ch in token if not ch.isspace() and unicodedata.category(ch) != "Cc"
    )


def format_auth_header(token: str) -> str:
    """Personal API keys go out raw, OAuth access tokens as ``Bearer``."""
    sanitized = sanitize_token(token)
    if not sanitized:
        return ""
    if sanitized.startswith("Bearer"):
        sanitized = sanitize_token(sanitized[len("Bearer"):])
    if sanitized.startswith(API_KEY_PREFIX):
        return sanitized
    return f"Bearer {sanitized}"


class StaticTokenProvider:
    def __init__(self, token: str, auth_mode: str = ""):
        self._token = sanitize_token(token or "")
        self.auth_mode = auth_mode

    def get_token(self) -> str:
        if not self._token:
            raise AuthenticationError(f"no Linear token configured; {REAUTH_HINT}")
        return self._token


class StoredTokenProvider:
    """Token saved by ``linear auth login``, with a ``LINEAR_API_KEY`` fallback.

    The file holds either the raw token or JSON with ``access_token`` and
    ``auth_mode``. It is re-read on every call so tokens refreshed by another
    process are picked up.
    """

    def __init__(self, path: str, env_var: str = "LINEAR_API_KEY"):
        self._path = os.path.expanduser(path)
        self._env_var = env_var

    def _read_file(self) -> tuple[str, str]:
        try:
            with open(self._path, encoding="utf-8") as f:
                raw = f.read()
        except FileNotFoundError:
            return "", ""
        except OSError as exc:
            logger.warning("Could not read token file %s: %s", self._path, exc)
            return "", ""

        raw = raw.strip()
        if raw.startswith("{"):
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed token file %s", self._path)
                return "", ""
            return sanitize_token(str(data.get("access_token") or "")), str(data.get("auth_mode") or "")
        return sanitize_token(raw), ""

    def get_token(self) -> str:
        token, _ = self._read_file()
        if token:
            return token
        token = sanitize_token(os.getenv(self._env_var, ""))
        if token:
            return token
        raise AuthenticationError(f"no Linear token found at {self._path}; {REAUTH_HINT}")

    @property
    def auth_mode(self) -> str:
        _, mode = self._read_file()
        return mode
