"""
Error taxonomy shared by the resolver, the API client and the downloader.

Every error carries a short machine-readable ``code`` next to its message so
tool surfaces can branch on it; resolution failures additionally render
numbered remediation steps because most callers are agents that have to
correct themselves without a human reading the output.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any


def format_guidance(
    operation: str,
    reason: str,
    guidance: Sequence[str] = (),
    example: str | None = None,
    debug: str | None = None,
) -> str:
    parts = [f"{operation} failed: {reason}"]
    if guidance:
        steps = "\n".join(f"{i}. {step}" for i, step in enumerate(guidance, start=1))
        parts.append(f"To resolve this:\n{steps}")
    if example:
        parts.append(f"Example:\n{example}")
    if debug:
        parts.append(f"Debug info: {debug}")
    return "\n\n".join(parts)


class LinearBridgeError(RuntimeError):
    """Base class for all errors raised by this package."""

    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}


class ValidationError(LinearBridgeError):
    """Malformed or empty input, detected before any I/O."""

    def __init__(self, field: str, value: Any = None, reason: str = "is invalid"):
        self.field = field
        self.value = value
        self.reason = reason
        if value in (None, ""):
            message = f"validation error: {field} {reason}"
        else:
            message = f"validation error: field '{field}' with value '{value}' {reason}"
        super().__init__("validation", message)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["field"] = self.field
        return payload


class _SuggestionsError(LinearBridgeError):
    """Shared shape for resolution failures that list alternatives."""

    def __init__(
        self,
        code: str,
        resource_type: str,
        query: str,
        suggestions: Sequence[str],
        message: str,
    ):
        self.resource_type = resource_type
        self.query = query
        self.suggestions = list(suggestions)
        super().__init__(code, message)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["resourceType"] = self.resource_type
        payload["query"] = self.query
        if self.suggestions:
            payload["suggestions"] = self.suggestions
        return payload


class NotFoundError(_SuggestionsError):
    """A well-formed identifier that matches nothing."""

    def __init__(
        self,
        resource_type: str,
        resource_id: str,
        suggestions: Sequence[str] = (),
        *,
        operation: str | None = None,
        guidance: Sequence[str] = (),
        example: str | None = None,
    ):
        base = f"{resource_type} not found: {resource_id}" if resource_id else f"{resource_type} not found"
        if operation:
            message = format_guidance(
                operation,
                f"{resource_type} '{resource_id}' not found",
                guidance,
                example,
                debug=base,
            )
        else:
            message = base
        super().__init__("not_found", resource_type, resource_id, suggestions, message)

    @property
    def resource_id(self) -> str:
        return self.query


class AmbiguousMatchError(_SuggestionsError):
    """A name matched more than one entity; ``suggestions`` lists them all."""

    def __init__(
        self,
        resource_type: str,
        query: str,
        candidates: Sequence[str],
        *,
        guidance: Sequence[str] = (),
        example: str | None = None,
    ):
        candidates = list(candidates)
        reason = f"multiple {resource_type}s match '{query}'"
        message = format_guidance(
            f"Resolve {resource_type}",
            reason,
            guidance,
            example,
            debug=f"ambiguous, matches: {', '.join(candidates)}",
        )
        super().__init__("ambiguous", resource_type, query, candidates, message)

    @property
    def candidates(self) -> list[str]:
        return self.suggestions


class AuthenticationError(LinearBridgeError):
    """Missing, unreadable or rejected credentials. Never retried."""

    def __init__(self, message: str):
        super().__init__("auth", message)


class ResourceTooLargeError(LinearBridgeError):
    def __init__(self, message: str, size: int | None = None, limit: int | None = None):
        super().__init__("too_large", message)
        self.size = size
        self.limit = limit


class DownloadError(LinearBridgeError):
    """A failed attachment download attempt.

    ``retryable`` is decided where the failure is detected (status code or
    transport error class), not by matching message text later.
    """

    def __init__(
        self,
        kind: str,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(f"download_{kind}", message)
        self.kind = kind
        self.status_code = status_code
        self.retryable = retryable


class LinearAPIError(LinearBridgeError):
    """The GraphQL endpoint rejected a request or returned errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__("api_error", message)
        self.status_code = status_code
