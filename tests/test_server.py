from __future__ import annotations

from typing import Any

import pytest

from linear_bridge import server
from linear_bridge.attachments import AttachmentCache, AttachmentClient
from linear_bridge.auth import StaticTokenProvider
from linear_bridge.errors import NotFoundError
from linear_bridge.models import Cycle, Issue, Project, Team
from linear_bridge.resolver import Resolver, ResolverCache


class FakeApi:
    def __init__(self):
        self.calls: list[str] = []
        self.teams = [Team(id="team-uuid", key="ENG", name="Engineering")]
        self.cycles = [Cycle(id="cycle-uuid", number=62, name="Cycle 62")]
        self.projects = [Project(id="p1", name="Alpha"), Project(id="p2", name="Beta")]

    def get_teams(self) -> list[Team]:
        self.calls.append("get_teams")
        return self.teams

    def list_cycles(self, team_id: str, limit: int = 100) -> list[Cycle]:
        self.calls.append(f"list_cycles:{team_id}")
        return self.cycles

    def list_projects(self, team_id: str | None = None, limit: int = 100) -> list[Project]:
        self.calls.append(f"list_projects:{team_id}")
        return self.projects

    def get_issue(self, identifier: str) -> Issue:
        self.calls.append(f"get_issue:{identifier}")
        if identifier != "ENG-1":
            raise NotFoundError("issue", identifier)
        return Issue(id="issue-uuid", identifier="ENG-1")

    def list_attachments(self, issue_id: str) -> list[Any]:
        self.calls.append(f"list_attachments:{issue_id}")
        return []

    def close(self) -> None:
        self.calls.append("close")


@pytest.fixture
def fake_api(monkeypatch: pytest.MonkeyPatch) -> FakeApi:
    api = FakeApi()
    resolver = Resolver(api, cache=ResolverCache(300, auto_start=False))
    attachments = AttachmentClient(
        StaticTokenProvider("lin_api_test"),
        api,
        cache=AttachmentCache(auto_start=False),
    )
    monkeypatch.setattr(server, "_api", api)
    monkeypatch.setattr(server, "_resolver", resolver)
    monkeypatch.setattr(server, "_attachments", attachments)
    return api


def test_resolve_cycle_resolves_team_first(fake_api: FakeApi):
    assert server.resolve_cycle("62", "ENG") == {"id": "cycle-uuid"}
    assert fake_api.calls == ["get_teams", "list_cycles:team-uuid"]


def test_team_uuid_is_not_looked_up(fake_api: FakeApi):
    team_uuid = "123e4567-e89b-12d3-a456-426614174000"
    server.resolve_cycle("62", team_uuid)
    assert fake_api.calls == [f"list_cycles:{team_uuid}"]


def test_errors_are_returned_as_payloads(fake_api: FakeApi):
    result = server.resolve_project("Gamma")
    assert result["error"]["code"] == "not_found"
    assert result["error"]["suggestions"] == ["Alpha", "Beta"]
    assert result["error"]["resourceType"] == "project"


def test_validation_error_payload(fake_api: FakeApi):
    result = server.resolve_issue("not an issue")
    assert result["error"]["code"] == "validation"
    assert fake_api.calls == []


def test_list_attachments_resolves_identifier(fake_api: FakeApi):
    assert server.list_attachments("ENG-1") == {"attachments": []}
    assert fake_api.calls == ["get_issue:ENG-1", "list_attachments:issue-uuid"]


def test_get_attachment_url_format(fake_api: FakeApi):
    result = server.get_attachment("https://files.example.com/a.png", format="url")
    assert result["format"] == "url"
    assert result["content"] == "https://files.example.com/a.png"


def test_cache_health_and_clear(fake_api: FakeApi):
    server.resolve_team("ENG")
    health = server.get_cache_health()
    assert health["resolver"]["entries"] == 2
    assert health["attachments"]["name"] == "attachment-cache"

    assert server.clear_caches() == {"cleared": True}
    assert server.get_cache_health()["resolver"]["entries"] == 0


def test_shutdown_closes_components(fake_api: FakeApi):
    server._shutdown()
    assert "close" in fake_api.calls
    assert server._api is None
    assert server._resolver is None
