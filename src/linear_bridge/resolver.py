"""
Resolution of human-readable identifiers to Linear UUIDs.

Callers pass emails, display names, team keys, issue identifiers ("CEN-123"),
cycle numbers or names, project names and label names; the resolver answers
with the UUID the API expects. Results are cached for a few minutes so
repeated lookups inside one session do not hit the network.

Ambiguity is never guessed away: when a name matches several entities the
caller gets an ``AmbiguousMatchError`` listing every candidate.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from . import identifiers
from .config import DEFAULT_RESOLVER_TTL_SECONDS
from .errors import AmbiguousMatchError, LinearAPIError, NotFoundError, ValidationError
from .models import Cycle, Issue, Label, Project, Team, User
from .ttl_cache import TTLCache

logger = logging.getLogger(__name__)

CYCLE_LIMIT = 100
PROJECT_LIMIT = 100
USER_SEARCH_LIMIT = 10

USER_BY_EMAIL = "userByEmail"
USER_BY_NAME = "userByName"
TEAM_BY_NAME = "teamByName"
TEAM_BY_KEY = "teamByKey"
ISSUE_BY_IDENTIFIER = "issueByIdentifier"
LABEL_BY_NAME = "labelByName"
PROJECT_BY_NAME = "projectByName"

NAMESPACES = (
    USER_BY_EMAIL,
    USER_BY_NAME,
    TEAM_BY_NAME,
    TEAM_BY_KEY,
    ISSUE_BY_IDENTIFIER,
    LABEL_BY_NAME,
    PROJECT_BY_NAME,
)


class ResolverClient(Protocol):
    """The subset of the API client the resolver depends on."""

    def get_viewer(self) -> User: ...

    def get_user_by_email(self, email: str) -> User: ...

    def list_users_by_display_name(
        self, display_name: str, active_only: bool | None = True, limit: int = 10
    ) -> list[User]: ...

    def get_teams(self) -> list[Team]: ...

    def get_issue(self, id_or_identifier: str) -> Issue: ...

    def list_cycles(self, team_id: str, limit: int = 100) -> list[Cycle]: ...

    def list_projects(self, team_id: str | None = None, limit: int = 100) -> list[Project]: ...

    def list_labels(self, team_id: str) -> list[Label]: ...

    def is_agent_mode(self) -> bool: ...


@dataclass(frozen=True)
class ResolvedUser:
    """A resolved user id plus whether it belongs to an OAuth application.

    Applications are set as an issue's delegate, humans as its assignee.
    """

    id: str
    is_application: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "isApplication": self.is_application}


class ResolverCache:
    """Seven string namespaces sharing one lock, one TTL and one sweep."""

    def __init__(
        self,
        ttl: float = DEFAULT_RESOLVER_TTL_SECONDS,
        *,
        clock: Callable[[], float] | None = None,
        auto_start: bool = True,
    ):
        kwargs: dict[str, Any] = {"name": "resolver-cache", "auto_start": auto_start}
        if clock is not None:
            kwargs["clock"] = clock
        self._cache: TTLCache[str] = TTLCache(ttl, **kwargs)

    def get(self, namespace: str, key: str) -> str | None:
        return self._cache.get((namespace, key))

    def set(self, namespace: str, key: str, value: str) -> None:
        if not key:
            return
        self._cache.set((namespace, key), value)

    def get_label(self, team_id: str, label_name: str) -> str | None:
        return self.get(LABEL_BY_NAME, f"{team_id}:{label_name}")

    def set_label(self, team_id: str, label_name: str, label_id: str) -> None:
        self.set(LABEL_BY_NAME, f"{team_id}:{label_name}", label_id)

    def remove_expired(self) -> int:
        return self._cache.remove_expired()

    def clear(self) -> None:
        self._cache.clear()

    def close(self) -> None:
        self._cache.close()

    def __len__(self) -> int:
        return len(self._cache)

    def stats(self) -> dict[str, Any]:
        return self._cache.stats()


def _wrap_api_error(context: str, exc: LinearAPIError) -> LinearAPIError:
    return LinearAPIError(f"{context}: {exc.message}", status_code=exc.status_code)


def _require(value: str, field: str, reason: str = "cannot be empty") -> None:
    if not value:
        raise ValidationError(field, value, reason)


class Resolver:
    """Translate human-readable identifiers into Linear UUIDs."""

    def __init__(
        self,
        client: ResolverClient,
        ttl: float = DEFAULT_RESOLVER_TTL_SECONDS,
        *,
        cache: ResolverCache | None = None,
    ):
        self._client = client
        self._cache = cache if cache is not None else ResolverCache(ttl)

    @property
    def cache(self) -> ResolverCache:
        return self._cache

    # Users

    def resolve_user(self, name_or_email: str) -> ResolvedUser:
        """Resolve ``"me"``, a UUID, an email or a (partial) display name."""
        _require(name_or_email, "user", "identifier cannot be empty")

        if name_or_email.lower() == "me":
            try:
                viewer = self._client.get_viewer()
            except LinearAPIError as exc:
                raise _wrap_api_error("failed to resolve 'me'", exc) from exc
            return ResolvedUser(id=viewer.id, is_application=self._client.is_agent_mode())

        if identifiers.is_uuid(name_or_email):
            # Application status is unknown without a lookup.
            return ResolvedUser(id=name_or_email, is_application=False)

        if identifiers.is_email(name_or_email):
            return self._resolve_user_by_email(name_or_email)

        return self._resolve_user_by_name(name_or_email)

    def _resolve_user_by_email(self, email: str) -> ResolvedUser:
        cached = self._cache.get(USER_BY_EMAIL, email)
        if cached is not None:
            logger.debug("Resolved user %s from cache", email)
            return ResolvedUser(id=cached, is_application=identifiers.is_application_email(email))

        logger.debug("Looking up user by email %s", email)
        try:
            user = self._client.get_user_by_email(email)
        except NotFoundError as exc:
            raise NotFoundError("user", email) from exc
        except LinearAPIError as exc:
            raise _wrap_api_error("failed to resolve user by email", exc) from exc

        self._cache.set(USER_BY_EMAIL, email, user.id)
        self._cache.set(USER_BY_NAME, user.name, user.id)
        return ResolvedUser(id=user.id, is_application=identifiers.is_application_email(user.email))

    def _resolve_user_by_name(self, name: str) -> ResolvedUser:
        cached = self._cache.get(USER_BY_NAME, name)
        if cached is not None:
            logger.debug("Resolved user %r from cache", name)
            # No email to hand, so application status cannot be derived.
            return ResolvedUser(id=cached, is_application=False)

        logger.debug("Searching users by display name %r", name)
        try:
            users = self._client.list_users_by_display_name(
                name, active_only=True, limit=USER_SEARCH_LIMIT
            )
        except LinearAPIError as exc:
            raise _wrap_api_error("failed to list users for name resolution", exc) from exc

        needle = name.lower()
        matches: list[User] = []
        for user in users:
            full, display = user.name.lower(), user.display_name.lower()
            if full == needle or display == needle:
                matches.append(user)
            elif needle in full or needle in display:
                matches.append(user)

        if not matches:
            raise NotFoundError("user", name)

        if len(matches) > 1:
            raise AmbiguousMatchError(
                "user",
                name,
                [f"{user.name} ({user.email})" for user in matches],
                guidance=[
                    "Use the full email address for exact matching",
                    "Use the complete display name",
                    "Choose from the suggestions below",
                ],
                example=(
                    f"Use email for exact match: {matches[0].email}\n"
                    f"Or use the full name: {matches[0].name}"
                ),
            )

        user = matches[0]
        self._cache.set(USER_BY_NAME, name, user.id)
        self._cache.set(USER_BY_EMAIL, user.email, user.id)
        return ResolvedUser(id=user.id, is_application=identifiers.is_application_email(user.email))

    # Teams

    def resolve_team(self, key_or_name: str) -> str:
        """Resolve a team key ("ENG") or team name ("Engineering")."""
        _require(key_or_name, "team", "identifier cannot be empty")

        cached = self._cache.get(TEAM_BY_KEY, key_or_name)
        if cached is None:
            cached = self._cache.get(TEAM_BY_NAME, key_or_name)
        if cached is not None:
            logger.debug("Resolved team %r from cache", key_or_name)
            return cached

        logger.debug("Fetching teams to resolve %r", key_or_name)
        try:
            teams = self._client.get_teams()
        except LinearAPIError as exc:
            raise _wrap_api_error("failed to fetch teams for resolution", exc) from exc

        key_upper = key_or_name.upper()
        name_lower = key_or_name.lower()
        match = next((t for t in teams if t.key.upper() == key_upper), None)
        if match is None:
            match = next((t for t in teams if t.name.lower() == name_lower), None)
        if match is None:
            raise NotFoundError("team", key_or_name)

        self._cache.set(TEAM_BY_KEY, match.key, match.id)
        self._cache.set(TEAM_BY_NAME, match.name, match.id)
        return match.id

    # Issues

    def resolve_issue(self, identifier: str) -> str:
        """Resolve a TEAM-NUMBER identifier. UUIDs and free text are rejected."""
        _require(identifier, "identifier", "issue identifier cannot be empty")
        if not identifiers.is_issue_identifier(identifier):
            raise ValidationError(
                "identifier", identifier, "must be in format TEAM-NUMBER (e.g., CEN-123)"
            )

        cached = self._cache.get(ISSUE_BY_IDENTIFIER, identifier)
        if cached is not None:
            logger.debug("Resolved issue %s from cache", identifier)
            return cached

        logger.debug("Looking up issue %s", identifier)
        try:
            issue = self._client.get_issue(identifier)
        except NotFoundError as exc:
            raise NotFoundError("issue", identifier) from exc
        except LinearAPIError as exc:
            raise _wrap_api_error(f"failed to get issue {identifier}", exc) from exc

        self._cache.set(ISSUE_BY_IDENTIFIER, identifier, issue.id)
        return issue.id

    # Cycles

    def resolve_cycle(self, number_or_name_or_id: str, team_id: str) -> str:
        """Resolve a cycle number ("62"), name ("Cycle 67") or UUID within a team.

        Numbers are tried before names, so "62" picks cycle #62 even if
        another cycle is literally named "62".
        """
        _require(number_or_name_or_id, "cycle", "identifier cannot be empty")
        _require(team_id, "teamId", "is required for cycle resolution")

        # Looser than is_uuid on purpose; cycle ids are only length-checked.
        if len(number_or_name_or_id) == 36 and "-" in number_or_name_or_id:
            return number_or_name_or_id

        try:
            cycles = self._client.list_cycles(team_id, limit=CYCLE_LIMIT)
        except LinearAPIError as exc:
            raise _wrap_api_error("failed to list cycles", exc) from exc

        value = number_or_name_or_id.strip()
        if value.isdecimal():
            number = int(value)
            for cycle in cycles:
                if cycle.number == number:
                    return cycle.id
            logger.debug("No cycle #%d in team %s; trying name match", number, team_id)

        return self._match_cycle_name(number_or_name_or_id, cycles)

    def _match_cycle_name(self, name: str, cycles: list[Cycle]) -> str:
        needle = name.lower()
        matches: list[Cycle] = []
        for cycle in cycles:
            cycle_name = cycle.name.lower()
            if cycle_name == needle:
                matches.append(cycle)
            elif cycle_name and needle in cycle_name:
                matches.append(cycle)

        if not matches:
            raise NotFoundError("cycle", name)

        if len(matches) > 1:
            raise AmbiguousMatchError(
                "cycle",
                name,
                [f"#{cycle.number}: {cycle.name}" for cycle in matches],
                guidance=[
                    "Use the cycle number for exact matching (e.g., '62' instead of 'Cycle 62')",
                    "Use the complete cycle name",
                    "Choose from the suggestions below",
                ],
                example=(
                    f"Use cycle number for exact match: {matches[0].number}\n"
                    f"Or use the full name: {matches[0].name}"
                ),
            )

        return matches[0].id

    # Projects

    def resolve_project(self, name_or_id: str, team_id: str = "") -> str:
        """Resolve a project name (exact, case-insensitive) or UUID.

        With ``team_id`` only that team's projects are searched.
        """
        _require(name_or_id, "project", "identifier cannot be empty")

        if identifiers.is_uuid(name_or_id):
            return name_or_id

        cached = self._cache.get(PROJECT_BY_NAME, name_or_id)
        if cached is not None:
            logger.debug("Resolved project %r from cache", name_or_id)
            return cached

        try:
            projects = self._client.list_projects(team_id or None, limit=PROJECT_LIMIT)
        except LinearAPIError as exc:
            raise _wrap_api_error("failed to fetch projects for resolution", exc) from exc

        needle = name_or_id.lower()
        matches = [p for p in projects if p.name.lower() == needle]

        if not matches:
            available = [p.name for p in projects]
            raise NotFoundError(
                "project",
                name_or_id,
                available,
                operation="Resolve project",
                guidance=[
                    "Check the project name spelling (case-insensitive)",
                    "List projects to see the available names",
                    "Use the project UUID for exact matching",
                ],
                example=f"Available projects: {', '.join(available)}",
            )

        if len(matches) > 1:
            candidates = [f"{p.name} (ID: {p.id})" for p in matches]
            raise AmbiguousMatchError(
                "project",
                name_or_id,
                candidates,
                guidance=[
                    "Use the project UUID for exact matching",
                    "Choose from the suggestions below",
                ],
                example=f"Matching projects: {', '.join(candidates)}",
            )

        project = matches[0]
        self._cache.set(PROJECT_BY_NAME, name_or_id, project.id)
        return project.id

    # Labels

    def resolve_label(self, label_name: str, team_id: str) -> str:
        """Resolve a label name within a team (labels are team-scoped)."""
        _require(label_name, "label", "name cannot be empty")
        _require(team_id, "teamId", "is required for label resolution")

        cached = self._cache.get_label(team_id, label_name)
        if cached is not None:
            logger.debug("Resolved label %r from cache", label_name)
            return cached

        try:
            labels = self._client.list_labels(team_id)
        except LinearAPIError as exc:
            raise _wrap_api_error("failed to list labels for resolution", exc) from exc

        needle = label_name.lower()
        for label in labels:
            if label.name.lower() == needle:
                self._cache.set_label(team_id, label_name, label.id)
                return label.id

        available = [label.name for label in labels]
        raise NotFoundError(
            "label",
            label_name,
            available,
            operation="Resolve label",
            guidance=[
                "Check the label name spelling",
                "List the team's labels to see the available names",
                "Create the label in Linear if it doesn't exist",
            ],
            example=f"Available labels: {', '.join(available)}",
        )

    # Housekeeping

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> dict[str, Any]:
        return self._cache.stats()

    def close(self) -> None:
        self._cache.close()
