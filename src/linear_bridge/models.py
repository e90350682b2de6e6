"""
Plain records returned by the GraphQL client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


def _str(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


@dataclass
class User:
    id: str
    name: str = ""
    display_name: str = ""
    email: str = ""
    active: bool = True
    admin: bool = False

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> User:
        return cls(
            id=_str(node.get("id")),
            name=_str(node.get("name")),
            display_name=_str(node.get("displayName")),
            email=_str(node.get("email")),
            active=bool(node.get("active", True)),
            admin=bool(node.get("admin", False)),
        )


@dataclass
class Team:
    id: str
    key: str = ""
    name: str = ""

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> Team:
        return cls(id=_str(node.get("id")), key=_str(node.get("key")), name=_str(node.get("name")))


@dataclass
class Issue:
    id: str
    identifier: str = ""
    title: str = ""

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> Issue:
        return cls(
            id=_str(node.get("id")),
            identifier=_str(node.get("identifier")),
            title=_str(node.get("title")),
        )


@dataclass
class Cycle:
    id: str
    number: int = 0
    name: str = ""

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> Cycle:
        return cls(
            id=_str(node.get("id")),
            number=int(node.get("number") or 0),
            name=_str(node.get("name")),
        )


@dataclass
class Project:
    id: str
    name: str = ""
    state: str = ""

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> Project:
        return cls(id=_str(node.get("id")), name=_str(node.get("name")), state=_str(node.get("state")))


@dataclass
class Label:
    id: str
    name: str = ""

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> Label:
        return cls(id=_str(node.get("id")), name=_str(node.get("name")))


@dataclass
class Attachment:
    id: str
    url: str = ""
    title: str = ""
    subtitle: str = ""
    source_type: str = ""
    created_at: str = ""

    @classmethod
    def from_node(cls, node: dict[str, Any]) -> Attachment:
        return cls(
            id=_str(node.get("id")),
            url=_str(node.get("url")),
            title=_str(node.get("title")),
            subtitle=_str(node.get("subtitle")),
            source_type=_str(node.get("sourceType")),
            created_at=_str(node.get("createdAt")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "subtitle": self.subtitle,
            "sourceType": self.source_type,
            "createdAt": self.created_at,
        }


@dataclass
class UploadTarget:
    """Where to PUT a file, as handed out by the ``fileUpload`` mutation."""

    upload_url: str
    asset_url: str
    headers: dict[str, str] = field(default_factory=dict)
