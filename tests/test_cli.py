from __future__ import annotations

import json

import pytest

from linear_bridge import cli, server
from linear_bridge.errors import AmbiguousMatchError
from linear_bridge.resolver import ResolvedUser


class FakeResolver:
    def __init__(self):
        self.calls: list[tuple[str, tuple[str, ...]]] = []

    def resolve_user(self, value: str) -> ResolvedUser:
        self.calls.append(("user", (value,)))
        if value == "John":
            raise AmbiguousMatchError("user", value, ["John Smith (js@x.io)", "John Doe (jd@x.io)"])
        return ResolvedUser(id="user-uuid")

    def resolve_team(self, value: str) -> str:
        self.calls.append(("team", (value,)))
        return "team-uuid"

    def resolve_cycle(self, value: str, team_id: str) -> str:
        self.calls.append(("cycle", (value, team_id)))
        return "cycle-uuid"

    def resolve_project(self, value: str, team_id: str = "") -> str:
        self.calls.append(("project", (value, team_id)))
        return "project-uuid"


@pytest.fixture
def fake_resolver(monkeypatch: pytest.MonkeyPatch) -> FakeResolver:
    resolver = FakeResolver()
    monkeypatch.setattr(server, "get_resolver", lambda: resolver)
    return resolver


def test_resolve_user_prints_json(fake_resolver: FakeResolver, capsys: pytest.CaptureFixture[str]):
    assert cli.main(["resolve", "user", "me"]) == 0
    assert json.loads(capsys.readouterr().out) == {"id": "user-uuid", "isApplication": False}


def test_cycle_resolves_team_first(fake_resolver: FakeResolver, capsys: pytest.CaptureFixture[str]):
    assert cli.main(["resolve", "cycle", "62", "--team", "ENG"]) == 0
    assert fake_resolver.calls == [("team", ("ENG",)), ("cycle", ("62", "team-uuid"))]
    assert json.loads(capsys.readouterr().out) == {"id": "cycle-uuid"}


def test_project_without_team(fake_resolver: FakeResolver, capsys: pytest.CaptureFixture[str]):
    assert cli.main(["resolve", "project", "Roadmap"]) == 0
    assert fake_resolver.calls == [("project", ("Roadmap", ""))]


def test_cycle_without_team_fails(fake_resolver: FakeResolver, capsys: pytest.CaptureFixture[str]):
    assert cli.main(["resolve", "cycle", "62"]) == 1
    assert "--team is required" in capsys.readouterr().err
    assert fake_resolver.calls == []


def test_errors_go_to_stderr(fake_resolver: FakeResolver, capsys: pytest.CaptureFixture[str]):
    assert cli.main(["resolve", "user", "John"]) == 1
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "John Smith (js@x.io)" in captured.err


def test_attachment_url_format(monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]):
    monkeypatch.setattr(server, "_attachments", None)
    assert cli.main(["attachment", "https://files.example.com/a.png", "--format", "metadata"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == {"format": "metadata", "status": "ok", "url": "https://files.example.com/a.png"}
    server._shutdown()


def test_unknown_resource_rejected():
    with pytest.raises(SystemExit):
        cli.parse_args(["resolve", "widget", "x"])
