"""
Synchronous GraphQL client for the Linear API.

Only the lookups the resolver and attachment tools need are implemented.
Transport failures, 5xx and 429 responses are retried with exponential
backoff; 401 surfaces immediately as an authentication error.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

import httpx

from .auth import REAUTH_HINT, TokenProvider, format_auth_header
from .config import DEFAULT_API_URL
from .errors import AuthenticationError, LinearAPIError, NotFoundError
from .models import Attachment, Cycle, Issue, Label, Project, Team, User, UploadTarget

logger = logging.getLogger(__name__)

MAX_RETRIES = 5
BASE_DELAY_SECONDS = 0.1
QUERY_PREVIEW_CHARS = 100

_USER_FIELDS = "id name displayName email active admin"
_ATTACHMENT_FIELDS = "id url title subtitle sourceType createdAt"

VIEWER_QUERY = f"""
query GetViewer {{
    viewer {{ {_USER_FIELDS} }}
}}
"""

USER_BY_EMAIL_QUERY = f"""
query GetUserByEmail($email: String!) {{
    users(filter: {{ email: {{ eq: $email }} }}) {{
        nodes {{ {_USER_FIELDS} }}
    }}
}}
"""

USERS_BY_DISPLAY_NAME_QUERY = f"""
query ListUsersByDisplayName($filter: UserFilter!, $first: Int!) {{
    users(filter: $filter, first: $first) {{
        nodes {{ {_USER_FIELDS} }}
    }}
}}
"""

TEAMS_QUERY = """
query GetTeams {
    teams(first: 250) {
        nodes { id key name }
    }
}
"""

ISSUE_QUERY = """
query GetIssue($id: String!) {
    issue(id: $id) { id identifier title }
}
"""

CYCLES_QUERY = """
query ListCycles($filter: CycleFilter, $first: Int) {
    cycles(filter: $filter, first: $first) {
        nodes { id number name }
    }
}
"""

PROJECTS_QUERY = """
query ListProjects($first: Int) {
    projects(first: $first) {
        nodes { id name state }
    }
}
"""

TEAM_PROJECTS_QUERY = """
query ListProjectsByTeam($teamId: String!, $first: Int) {
    team(id: $teamId) {
        projects(first: $first) {
            nodes { id name state }
        }
    }
}
"""

TEAM_LABELS_QUERY = """
query GetTeamLabels($teamId: String!) {
    team(id: $teamId) {
        labels { nodes { id name } }
    }
}
"""

ISSUE_ATTACHMENTS_QUERY = f"""
query IssueAttachments($id: String!) {{
    issue(id: $id) {{
        attachments(first: 50) {{
            nodes {{ {_ATTACHMENT_FIELDS} }}
        }}
    }}
}}
"""

ATTACHMENT_CREATE_MUTATION = f"""
mutation AttachmentCreate($input: AttachmentCreateInput!) {{
    attachmentCreate(input: $input) {{
        success
        attachment {{ {_ATTACHMENT_FIELDS} }}
    }}
}}
"""

ATTACHMENT_UPDATE_MUTATION = f"""
mutation AttachmentUpdate($id: String!, $input: AttachmentUpdateInput!) {{
    attachmentUpdate(id: $id, input: $input) {{
        success
        attachment {{ {_ATTACHMENT_FIELDS} }}
    }}
}}
"""

ATTACHMENT_DELETE_MUTATION = """
mutation AttachmentDelete($id: String!) {
    attachmentDelete(id: $id) { success }
}
"""

FILE_UPLOAD_MUTATION = """
mutation FileUpload($size: Int!, $filename: String!, $contentType: String!) {
    fileUpload(size: $size, filename: $filename, contentType: $contentType) {
        success
        uploadFile {
            uploadUrl
            assetUrl
            headers { key value }
        }
    }
}
"""


class LinearAPIClient:
    """Thin request/response mapping over Linear's GraphQL endpoint."""

    def __init__(
        self,
        token_provider: TokenProvider,
        url: str = DEFAULT_API_URL,
        *,
        http_client: httpx.Client | None = None,
        auth_mode: str | None = None,
        timeout_seconds: float = 30.0,
        max_retries: int = MAX_RETRIES,
        base_delay: float = BASE_DELAY_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._token_provider = token_provider
        self._url = url
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.Client(timeout=timeout_seconds)
        self._auth_mode = auth_mode
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._sleep = sleep

    @property
    def token_provider(self) -> TokenProvider:
        return self._token_provider

    @property
    def auth_mode(self) -> str:
        if self._auth_mode is not None:
            return self._auth_mode
        return str(getattr(self._token_provider, "auth_mode", "") or "")

    def is_agent_mode(self) -> bool:
        """True when authenticated as an OAuth application (delegate semantics)."""
        return self.auth_mode == "agent"

    def _backoff(self, attempt: int, factor: float = 1.0) -> float:
        return self._base_delay * (2**attempt) * factor

    def _post(self, payload: dict[str, Any]) -> httpx.Response:
        last_error = ""
        last_status: int | None = None
        for attempt in range(self._max_retries + 1):
            final = attempt == self._max_retries
            token = self._token_provider.get_token()
            headers = {
                "Authorization": format_auth_header(token),
                "Content-Type": "application/json",
            }
            try:
                response = self._http.post(self._url, json=payload, headers=headers)
            except httpx.TransportError as exc:
                last_error = f"network error: {exc}"
                if final:
                    raise LinearAPIError(
                        f"request failed after {self._max_retries} retries: {last_error}"
                    ) from exc
                delay = self._backoff(attempt)
                logger.warning("Linear API transport error (%s); retrying in %.2fs", exc, delay)
                self._sleep(delay)
                continue

            status = response.status_code
            if 200 <= status < 300:
                return response

            if status == 401:
                raise AuthenticationError(
                    f"unauthorized (401) - token may be expired or invalid; {REAUTH_HINT}"
                )

            if status == 429:
                last_error, last_status = "rate limited (429)", status
                if final:
                    break
                retry_after = response.headers.get("Retry-After", "")
                delay = float(retry_after) if retry_after.isdecimal() else self._backoff(attempt, 10)
                logger.warning("Linear API rate limited; retrying in %.2fs", delay)
                self._sleep(delay)
                continue

            if status >= 500:
                last_error, last_status = f"server error {status}: {response.text}", status
                if final:
                    break
                delay = self._backoff(attempt)
                logger.warning("Linear API server error %d; retrying in %.2fs", status, delay)
                self._sleep(delay)
                continue

            raise LinearAPIError(f"HTTP {status}: {response.text}", status_code=status)

        raise LinearAPIError(
            f"request failed after {self._max_retries} retries: {last_error}",
            status_code=last_status,
        )

    def execute(self, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        payload: dict[str, Any] = {"query": query}
        if variables is not None:
            payload["variables"] = variables

        response = self._post(payload)
        try:
            body = response.json()
        except ValueError as exc:
            raise LinearAPIError(f"failed to decode response: {exc}") from exc

        errors = body.get("errors") or []
        if errors:
            preview = " ".join(query.split())
            if len(preview) > QUERY_PREVIEW_CHARS:
                preview = preview[:QUERY_PREVIEW_CHARS] + "..."
            message = errors[0].get("message", "unknown error")
            raise LinearAPIError(f"GraphQL error: {message} (query: {preview})")

        return body.get("data") or {}

    # Users and teams

    def get_viewer(self) -> User:
        data = self.execute(VIEWER_QUERY)
        viewer = data.get("viewer")
        if not viewer:
            raise NotFoundError("user", "viewer")
        return User.from_node(viewer)

    def get_user_by_email(self, email: str) -> User:
        data = self.execute(USER_BY_EMAIL_QUERY, {"email": email})
        nodes = (data.get("users") or {}).get("nodes") or []
        if not nodes:
            raise NotFoundError("user", email)
        if len(nodes) > 1:
            raise LinearAPIError(f"multiple users found with email: {email}")
        return User.from_node(nodes[0])

    def list_users_by_display_name(
        self, display_name: str, active_only: bool | None = True, limit: int = 10
    ) -> list[User]:
        user_filter: dict[str, Any] = {"displayName": {"contains": display_name}}
        if active_only is not None:
            user_filter["active"] = {"eq": active_only}
        data = self.execute(USERS_BY_DISPLAY_NAME_QUERY, {"filter": user_filter, "first": limit})
        nodes = (data.get("users") or {}).get("nodes") or []
        return [User.from_node(node) for node in nodes]

    def get_teams(self) -> list[Team]:
        data = self.execute(TEAMS_QUERY)
        nodes = (data.get("teams") or {}).get("nodes") or []
        return [Team.from_node(node) for node in nodes]

    def list_labels(self, team_id: str) -> list[Label]:
        data = self.execute(TEAM_LABELS_QUERY, {"teamId": team_id})
        team = data.get("team")
        if team is None:
            raise NotFoundError("team", team_id)
        nodes = (team.get("labels") or {}).get("nodes") or []
        return [Label.from_node(node) for node in nodes]

    # Issues, cycles, projects

    def get_issue(self, id_or_identifier: str) -> Issue:
        try:
            data = self.execute(ISSUE_QUERY, {"id": id_or_identifier})
        except LinearAPIError as exc:
            # Linear reports unknown issues as a GraphQL "Entity not found" error.
            if "not found" in exc.message.lower():
                raise NotFoundError("issue", id_or_identifier) from exc
            raise
        issue = data.get("issue")
        if not issue:
            raise NotFoundError("issue", id_or_identifier)
        return Issue.from_node(issue)

    def list_cycles(self, team_id: str, limit: int = 100) -> list[Cycle]:
        variables = {"filter": {"team": {"id": {"eq": team_id}}}, "first": limit}
        data = self.execute(CYCLES_QUERY, variables)
        nodes = (data.get("cycles") or {}).get("nodes") or []
        return [Cycle.from_node(node) for node in nodes]

    def list_projects(self, team_id: str | None = None, limit: int = 100) -> list[Project]:
        if team_id:
            data = self.execute(TEAM_PROJECTS_QUERY, {"teamId": team_id, "first": limit})
            team = data.get("team")
            if team is None:
                raise NotFoundError("team", team_id)
            nodes = (team.get("projects") or {}).get("nodes") or []
        else:
            data = self.execute(PROJECTS_QUERY, {"first": limit})
            nodes = (data.get("projects") or {}).get("nodes") or []
        return [Project.from_node(node) for node in nodes]

    # Attachments

    def list_attachments(self, issue_id: str) -> list[Attachment]:
        data = self.execute(ISSUE_ATTACHMENTS_QUERY, {"id": issue_id})
        issue = data.get("issue")
        if issue is None:
            raise NotFoundError("issue", issue_id)
        nodes = (issue.get("attachments") or {}).get("nodes") or []
        return [Attachment.from_node(node) for node in nodes]

    def create_attachment(
        self, issue_id: str, url: str, title: str, subtitle: str | None = None
    ) -> Attachment:
        attachment_input: dict[str, Any] = {"issueId": issue_id, "url": url, "title": title}
        if subtitle:
            attachment_input["subtitle"] = subtitle
        data = self.execute(ATTACHMENT_CREATE_MUTATION, {"input": attachment_input})
        result = data.get("attachmentCreate") or {}
        if not result.get("success"):
            raise LinearAPIError("attachmentCreate returned success=false")
        return Attachment.from_node(result.get("attachment") or {})

    def update_attachment(
        self, attachment_id: str, title: str, subtitle: str | None = None
    ) -> Attachment:
        attachment_input: dict[str, Any] = {"title": title}
        if subtitle:
            attachment_input["subtitle"] = subtitle
        data = self.execute(
            ATTACHMENT_UPDATE_MUTATION, {"id": attachment_id, "input": attachment_input}
        )
        result = data.get("attachmentUpdate") or {}
        if not result.get("success"):
            raise LinearAPIError("attachmentUpdate returned success=false")
        return Attachment.from_node(result.get("attachment") or {})

    def delete_attachment(self, attachment_id: str) -> None:
        data = self.execute(ATTACHMENT_DELETE_MUTATION, {"id": attachment_id})
        if not (data.get("attachmentDelete") or {}).get("success"):
            raise LinearAPIError("attachmentDelete returned success=false")

    def request_file_upload(self, size: int, filename: str, content_type: str) -> UploadTarget:
        data = self.execute(
            FILE_UPLOAD_MUTATION,
            {"size": size, "filename": filename, "contentType": content_type},
        )
        result = data.get("fileUpload") or {}
        upload = result.get("uploadFile")
        if not result.get("success") or not upload:
            raise LinearAPIError("fileUpload mutation failed")
        headers = {h["key"]: h["value"] for h in upload.get("headers") or [] if h.get("key")}
        return UploadTarget(
            upload_url=upload.get("uploadUrl", ""),
            asset_url=upload.get("assetUrl", ""),
            headers=headers,
        )

    def close(self) -> None:
        if self._owns_http_client:
            self._http.close()
