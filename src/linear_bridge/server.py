"""
MCP server exposing identifier resolution and attachment handling to agents.
"""

from __future__ import annotations

import atexit
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.fastmcp import FastMCP

from . import identifiers
from .api_client import LinearAPIClient
from .attachments import AttachmentCache, AttachmentClient
from .auth import StoredTokenProvider, TokenProvider
from .config import Settings
from .errors import LinearBridgeError
from .resolver import Resolver, ResolverCache

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(server: FastMCP) -> AsyncIterator[None]:
    try:
        yield
    finally:
        _shutdown()


mcp = FastMCP(
    "Linear Bridge",
    instructions=(
        "Resolves human-readable Linear identifiers (emails, names, team keys, "
        "issue identifiers like ENG-123, cycle numbers, project and label names) "
        "to UUIDs, and fetches issue attachments as base64, URL or metadata. "
        "Errors come back as {'error': {...}} with suggestions to retry with."
    ),
    lifespan=_lifespan,
)

_settings: Settings | None = None
_token_provider: TokenProvider | None = None
_api: LinearAPIClient | None = None
_resolver: Resolver | None = None
_attachments: AttachmentClient | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def get_token_provider() -> TokenProvider:
    """Stored token first, then ``LINEAR_API_KEY``."""
    global _token_provider
    if _token_provider is None:
        _token_provider = StoredTokenProvider(get_settings().token_path)
    return _token_provider


def get_api() -> LinearAPIClient:
    global _api
    if _api is None:
        settings = get_settings()
        _api = LinearAPIClient(
            get_token_provider(), settings.api_url, auth_mode=settings.auth_mode
        )
    return _api


def get_resolver() -> Resolver:
    global _resolver
    if _resolver is None:
        cache = ResolverCache(get_settings().resolver_ttl_seconds)
        _resolver = Resolver(get_api(), cache=cache)
    return _resolver


def get_attachments() -> AttachmentClient:
    global _attachments
    if _attachments is None:
        settings = get_settings()
        cache = AttachmentCache(
            settings.attachment_ttl_seconds, settings.attachment_sweep_seconds
        )
        _attachments = AttachmentClient(get_token_provider(), get_api(), cache=cache)
    return _attachments


def _shutdown() -> None:
    global _api, _resolver, _attachments
    for name, component in (("resolver", _resolver), ("attachments", _attachments), ("api", _api)):
        if component is None:
            continue
        try:
            component.close()
        except Exception as exc:
            logger.warning("Failed to close %s: %s", name, exc)
    _api = _resolver = _attachments = None


atexit.register(_shutdown)


def _guarded(fn: Callable[[], Any]) -> Any:
    try:
        return fn()
    except LinearBridgeError as exc:
        logger.debug("Tool call failed: %s", exc.message)
        return {"error": exc.to_dict()}


def _team_id(team: str) -> str:
    if identifiers.is_uuid(team):
        return team
    return get_resolver().resolve_team(team)


def _issue_id(issue: str) -> str:
    if identifiers.is_uuid(issue):
        return issue
    return get_resolver().resolve_issue(issue)


@mcp.tool()
def resolve_user(name_or_email: str) -> dict[str, Any]:
    """Resolve a user to their UUID.

    Args:
        name_or_email: "me", an email, a display name (partial matches allowed) or a UUID.
    """
    return _guarded(lambda: get_resolver().resolve_user(name_or_email).to_dict())


@mcp.tool()
def resolve_team(key_or_name: str) -> dict[str, Any]:
    """Resolve a team key (e.g., "ENG") or team name to its UUID."""
    return _guarded(lambda: {"id": get_resolver().resolve_team(key_or_name)})


@mcp.tool()
def resolve_issue(identifier: str) -> dict[str, Any]:
    """Resolve an issue identifier like "ENG-123" to its UUID."""
    return _guarded(lambda: {"id": get_resolver().resolve_issue(identifier)})


@mcp.tool()
def resolve_cycle(cycle: str, team: str) -> dict[str, Any]:
    """Resolve a cycle within a team.

    Args:
        cycle: Cycle number ("62"), cycle name ("Cycle 67") or UUID.
        team: Team key, name or UUID.
    """
    return _guarded(lambda: {"id": get_resolver().resolve_cycle(cycle, _team_id(team))})


@mcp.tool()
def resolve_project(name_or_id: str, team: str | None = None) -> dict[str, Any]:
    """Resolve a project name (case-insensitive) or UUID.

    Args:
        name_or_id: Project name or UUID.
        team: Optional team key, name or UUID to narrow the search.
    """

    def run() -> dict[str, Any]:
        team_id = _team_id(team) if team else ""
        return {"id": get_resolver().resolve_project(name_or_id, team_id)}

    return _guarded(run)


@mcp.tool()
def resolve_label(name: str, team: str) -> dict[str, Any]:
    """Resolve a label name within a team (labels are team-scoped)."""
    return _guarded(lambda: {"id": get_resolver().resolve_label(name, _team_id(team))})


@mcp.tool()
def get_attachment(url: str, format: str = "base64") -> dict[str, Any]:
    """Fetch an attachment.

    Args:
        url: Attachment URL as returned by list_attachments.
        format: "base64" (default, downloads and may downscale images over 1 MB),
            "url" (no download) or "metadata" (no download).

    Download problems do not raise; the response carries "status" and "error".
    """
    return _guarded(lambda: get_attachments().get_attachment(url, format).to_dict())


@mcp.tool()
def download_attachment_to_file(url: str) -> dict[str, Any]:
    """Download an attachment into the temp directory and return the file path."""
    return _guarded(lambda: {"path": get_attachments().download_to_temp_file(url)})


@mcp.tool()
def list_attachments(issue: str) -> dict[str, Any]:
    """List attachments of an issue given as identifier ("ENG-123") or UUID."""

    def run() -> dict[str, Any]:
        attachments = get_attachments().list_attachments(_issue_id(issue))
        return {"attachments": [a.to_dict() for a in attachments]}

    return _guarded(run)


@mcp.tool()
def create_attachment(
    issue: str, url: str, title: str, subtitle: str | None = None
) -> dict[str, Any]:
    """Link a URL to an issue as an attachment."""

    def run() -> dict[str, Any]:
        attachment = get_attachments().create_attachment(_issue_id(issue), url, title, subtitle)
        return attachment.to_dict()

    return _guarded(run)


@mcp.tool()
def delete_attachment(attachment_id: str) -> dict[str, Any]:
    """Delete an attachment by UUID."""

    def run() -> dict[str, Any]:
        get_attachments().delete_attachment(attachment_id)
        return {"deleted": attachment_id}

    return _guarded(run)


@mcp.tool()
def upload_file(path: str) -> dict[str, Any]:
    """Upload a local file to Linear storage.

    Returns the asset URL, usable in issue descriptions as ![name](assetUrl).
    """
    return _guarded(lambda: {"assetUrl": get_attachments().upload_file_from_path(path)})


@mcp.tool()
def get_cache_health() -> dict[str, Any]:
    """Report entry counts, TTLs and sweep state of the resolver and attachment caches."""
    return {
        "resolver": get_resolver().cache_stats(),
        "attachments": get_attachments().cache.stats(),
    }


@mcp.tool()
def clear_caches() -> dict[str, Any]:
    """Drop every cached resolution and attachment."""
    get_resolver().clear_cache()
    get_attachments().cache.clear()
    return {"cleared": True}


def main() -> None:
    logging.basicConfig(level=get_settings().log_level)
    mcp.run()
