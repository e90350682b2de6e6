"""
Environment-driven settings.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.linear.app/graphql"
DEFAULT_TOKEN_PATH = os.path.join("~", ".config", "linear", "token")

DEFAULT_RESOLVER_TTL_SECONDS = 300  # 5 minutes
# Linear attachment URLs expire after about an hour.
DEFAULT_ATTACHMENT_TTL_SECONDS = 1800
DEFAULT_ATTACHMENT_SWEEP_SECONDS = 300


def _int_env(var_name: str, default: int) -> int:
    raw = os.getenv(var_name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s value %r; using %d", var_name, raw, default)
        return default
    if value <= 0:
        logger.warning("Ignoring non-positive %s value %r; using %d", var_name, raw, default)
        return default
    return value


@dataclass(frozen=True)
class Settings:
    api_key: str | None = None
    api_url: str = DEFAULT_API_URL
    token_path: str = DEFAULT_TOKEN_PATH
    auth_mode: str | None = None
    resolver_ttl_seconds: int = DEFAULT_RESOLVER_TTL_SECONDS
    attachment_ttl_seconds: int = DEFAULT_ATTACHMENT_TTL_SECONDS
    attachment_sweep_seconds: int = DEFAULT_ATTACHMENT_SWEEP_SECONDS
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            api_key=os.getenv("LINEAR_API_KEY") or None,
            api_url=os.getenv("LINEAR_API_URL", DEFAULT_API_URL),
            token_path=os.path.expanduser(os.getenv("LINEAR_TOKEN_PATH", DEFAULT_TOKEN_PATH)),
            auth_mode=os.getenv("LINEAR_AUTH_MODE") or None,
            resolver_ttl_seconds=_int_env(
                "LINEAR_RESOLVER_TTL_SECONDS", DEFAULT_RESOLVER_TTL_SECONDS
            ),
            attachment_ttl_seconds=_int_env(
                "LINEAR_ATTACHMENT_TTL_SECONDS", DEFAULT_ATTACHMENT_TTL_SECONDS
            ),
            attachment_sweep_seconds=_int_env(
                "LINEAR_ATTACHMENT_SWEEP_SECONDS", DEFAULT_ATTACHMENT_SWEEP_SECONDS
            ),
            log_level=os.getenv("LINEAR_BRIDGE_LOG_LEVEL", "WARNING").upper(),
        )
