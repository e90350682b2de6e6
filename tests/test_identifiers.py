from __future__ import annotations

import pytest

from linear_bridge import identifiers
from linear_bridge.errors import ValidationError


@pytest.mark.parametrize(
    "value",
    [
        "123e4567-e89b-12d3-a456-426614174000",
        # Segment contents are not checked.
        "zzzzzzzz-zzzz-zzzz-zzzz-zzzzzzzzzzzz",
    ],
)
def test_is_uuid_accepts_hyphen_layout(value: str):
    assert identifiers.is_uuid(value)


@pytest.mark.parametrize(
    "value",
    ["", "ENG-123", "123e4567e89b12d3a456426614174000", "123e4567-e89b-12d3-a456-4266141740000"],
)
def test_is_uuid_rejects_other_shapes(value: str):
    assert not identifiers.is_uuid(value)


def test_is_email():
    assert identifiers.is_email("john@company.com")
    assert identifiers.is_email("a.b+tag@sub.example.io")
    assert not identifiers.is_email("John Doe")
    assert not identifiers.is_email("john@localhost")


@pytest.mark.parametrize("value", ["CEN-123", "ENG-1", "ABCDEF-99999"])
def test_issue_identifier_accepted(value: str):
    assert identifiers.is_issue_identifier(value)


@pytest.mark.parametrize("value", ["cen-123", "CEN123", "CEN-", "-123", "CEN-12a", "CEN-123\n"])
def test_issue_identifier_rejected(value: str):
    assert not identifiers.is_issue_identifier(value)


def test_parse_issue_identifier():
    assert identifiers.parse_issue_identifier("ENG-42") == ("ENG", 42)
    with pytest.raises(ValidationError) as exc_info:
        identifiers.parse_issue_identifier("not-an-issue")
    assert "TEAM-NUMBER" in exc_info.value.message


def test_application_email_suffix():
    assert identifiers.is_application_email("bot@oauthapp.linear.app")
    assert not identifiers.is_application_email("bot@linear.app")
