"""
Shape checks for the human-readable identifiers accepted by the resolver.
"""

from __future__ import annotations

import re

from .errors import ValidationError

ISSUE_IDENTIFIER_RE = re.compile(r"^[A-Z]+-\d+$")
EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

OAUTH_APP_EMAIL_SUFFIX = "@oauthapp.linear.app"


def is_uuid(value: str) -> bool:
    """Permissive UUID check: 36 chars with hyphens at 8, 13, 18 and 23.

    Segment contents are not validated; swap this predicate for a strict
    parse if Linear ever issues ids where that matters.
    """
    return (
        len(value) == 36
        and value[8] == "-"
        and value[13] == "-"
        and value[18] == "-"
        and value[23] == "-"
    )


def is_email(value: str) -> bool:
    return bool(EMAIL_RE.fullmatch(value))


def is_issue_identifier(value: str) -> bool:
    """True for TEAM-NUMBER identifiers such as ``CEN-123``."""
    return bool(ISSUE_IDENTIFIER_RE.fullmatch(value))


def parse_issue_identifier(value: str) -> tuple[str, int]:
    if not is_issue_identifier(value):
        raise ValidationError(
            "identifier", value, "must be in format TEAM-NUMBER (e.g., CEN-123)"
        )
    team_key, number = value.split("-", 1)
    return team_key, int(number)


def is_application_email(email: str) -> bool:
    """OAuth application actors have addresses under a fixed Linear domain."""
    return email.endswith(OAUTH_APP_EMAIL_SUFFIX)
