"""
Command-line access to the resolver and the attachment client.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any

from . import __version__, identifiers, server
from .attachments import AttachmentFormat
from .errors import LinearBridgeError

logger = logging.getLogger(__name__)

RESOURCE_TYPES = ("user", "team", "issue", "cycle", "project", "label")
TEAM_SCOPED = ("cycle", "label")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="linear-bridge",
        description="Resolve Linear identifiers to UUIDs and fetch issue attachments",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  linear-bridge resolve user me
  linear-bridge resolve issue ENG-123
  linear-bridge resolve cycle 62 --team ENG
  linear-bridge attachment https://uploads.linear.app/... --format metadata
  linear-bridge download https://uploads.linear.app/...
  linear-bridge serve

Environment Variables:
  LINEAR_API_KEY             Linear API key (used when no stored token exists)
  LINEAR_TOKEN_PATH          Stored token file (default: ~/.config/linear/token)
  LINEAR_BRIDGE_LOG_LEVEL    Log level on stderr (default: WARNING)
        """,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    resolve = subparsers.add_parser("resolve", help="Resolve an identifier to a UUID")
    resolve.add_argument("resource", choices=RESOURCE_TYPES)
    resolve.add_argument("value", help="Name, email, key, identifier, number or UUID")
    resolve.add_argument(
        "--team",
        default=None,
        help="Team key, name or UUID (required for cycle and label, optional for project)",
    )

    attachment = subparsers.add_parser("attachment", help="Fetch an attachment")
    attachment.add_argument("url")
    attachment.add_argument(
        "--format",
        choices=[f.value for f in AttachmentFormat],
        default=AttachmentFormat.BASE64.value,
        help="Response format (default: base64)",
    )

    download = subparsers.add_parser("download", help="Save an attachment to the temp directory")
    download.add_argument("url")

    subparsers.add_parser("serve", help="Run the MCP server over stdio")

    return parser.parse_args(argv)


def _team_id(team: str) -> str:
    if identifiers.is_uuid(team):
        return team
    return server.get_resolver().resolve_team(team)


def run_resolve(resource: str, value: str, team: str | None) -> dict[str, Any]:
    resolver = server.get_resolver()
    if resource in TEAM_SCOPED and not team:
        raise LinearBridgeError("validation", f"--team is required to resolve a {resource}")

    if resource == "user":
        return resolver.resolve_user(value).to_dict()
    if resource == "team":
        return {"id": resolver.resolve_team(value)}
    if resource == "issue":
        return {"id": resolver.resolve_issue(value)}
    if resource == "cycle":
        return {"id": resolver.resolve_cycle(value, _team_id(team))}
    if resource == "project":
        return {"id": resolver.resolve_project(value, _team_id(team) if team else "")}
    return {"id": resolver.resolve_label(value, _team_id(team))}


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=server.get_settings().log_level,
        stream=sys.stderr,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        server.mcp.run()
        return 0

    try:
        if args.command == "resolve":
            result = run_resolve(args.resource, args.value, args.team)
        elif args.command == "attachment":
            result = server.get_attachments().get_attachment(args.url, args.format).to_dict()
        else:
            result = {"path": server.get_attachments().download_to_temp_file(args.url)}
    except LinearBridgeError as exc:
        print(exc.message, file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("Interrupted", file=sys.stderr)
        return 130

    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
