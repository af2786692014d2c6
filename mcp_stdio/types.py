"""Value types shared by the session, manager and bridge."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any


class ServerState(str, enum.Enum):
    ABSENT = "absent"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class Tool:
    """A tool advertised by a server in its tools/list reply."""
    name: str
    description: str | None = None
    input_schema: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict) -> "Tool":
        schema = data.get("inputSchema")
        return cls(
            name=data["name"],
            description=data.get("description"),
            input_schema=schema if isinstance(schema, dict) else {},
        )


@dataclass(frozen=True)
class ContentItem:
    """One entry of a tools/call result, tagged text, image or resource."""
    type: str
    text: str | None = None
    data: str | None = None
    mime_type: str | None = None
    resource: dict[str, Any] | None = None

    @classmethod
    def from_dict(cls, item: dict) -> "ContentItem":
        resource = item.get("resource")
        return cls(
            type=str(item.get("type") or "text"),
            text=item.get("text"),
            data=item.get("data"),
            mime_type=item.get("mimeType"),
            resource=resource if isinstance(resource, dict) else None,
        )

    def to_dict(self) -> dict:
        out: dict[str, Any] = {"type": self.type}
        if self.text is not None:
            out["text"] = self.text
        if self.data is not None:
            out["data"] = self.data
        if self.mime_type is not None:
            out["mimeType"] = self.mime_type
        if self.resource is not None:
            out["resource"] = self.resource
        return out


@dataclass
class ToolCallResult:
    content: list[ContentItem] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_dict(cls, result: Any) -> "ToolCallResult":
        if not isinstance(result, dict):
            return cls()
        items = result.get("content") or []
        return cls(
            content=[ContentItem.from_dict(i) for i in items if isinstance(i, dict)],
            is_error=bool(result.get("isError", False)),
        )

    @classmethod
    def failure(cls, message: str) -> "ToolCallResult":
        return cls(content=[ContentItem(type="text", text=message)], is_error=True)

    @property
    def text(self) -> str:
        """Text items joined with newlines (images and resources skipped)."""
        return "\n".join(i.text for i in self.content if i.type == "text" and i.text)

    def to_dict(self) -> dict:
        return {
            "content": [i.to_dict() for i in self.content],
            "isError": self.is_error,
        }


@dataclass
class ServerStatus:
    name: str
    state: ServerState
    tools: list[Tool] = field(default_factory=list)
    error: str | None = None

    @property
    def connected(self) -> bool:
        return self.state is ServerState.CONNECTED
