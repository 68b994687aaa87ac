"""Chat message, part and attachment data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Literal, Mapping, Sequence, Union

__all__ = [
    "ChatRole",
    "TextPart",
    "ImagePart",
    "FilePart",
    "ToolCallPart",
    "SourcePart",
    "MessagePart",
    "Attachment",
    "ChatMessage",
    "HUMAN_QUESTION_TOOL",
    "part_from_mapping",
]

HUMAN_QUESTION_TOOL = "ask_human"
DEFAULT_FILE_NAME = "file"
DEFAULT_MIME_TYPE = "application/octet-stream"


def _utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""

    return datetime.now(timezone.utc)

ChatRole = Literal["user", "assistant", "system"]


@dataclass(slots=True, frozen=True)
class TextPart:
    text: str
    type: Literal["text"] = "text"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass(slots=True, frozen=True)
class ImagePart:
    image: str
    type: Literal["image"] = "image"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "image", "image": self.image}


@dataclass(slots=True, frozen=True)
class FilePart:
    name: str = DEFAULT_FILE_NAME
    mime_type: str = DEFAULT_MIME_TYPE
    data: str = ""
    type: Literal["file"] = "file"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "file", "name": self.name, "mimeType": self.mime_type, "data": self.data}


@dataclass(slots=True, frozen=True)
class ToolCallPart:
    """Tool invocation as it appears inside a message or snapshot."""

    call_id: str
    tool_name: str
    args: Mapping[str, Any] = field(default_factory=dict)
    result: Any = None
    type: Literal["tool-call"] = "tool-call"

    @property
    def has_result(self) -> bool:
        return self.result is not None

    @property
    def answer(self) -> str:
        """Return the user-supplied answer of a human-question call, or ``""``."""

        result = self.result
        if isinstance(result, Mapping):
            result = result.get("answer", result.get("text"))
        if result is None:
            return ""
        return str(result).strip()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": "tool-call",
            "toolCallId": self.call_id,
            "toolName": self.tool_name,
            "args": dict(self.args),
        }
        if self.result is not None:
            payload["result"] = self.result
        return payload


@dataclass(slots=True, frozen=True)
class SourcePart:
    """Citation source grouped under the tool call that produced it."""

    id: str
    url: str
    title: str | None = None
    parent_id: str | None = None
    type: Literal["source"] = "source"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": "source", "sourceType": "url", "id": self.id, "url": self.url}
        if self.title:
            payload["title"] = self.title
        if self.parent_id:
            payload["parentId"] = self.parent_id
        return payload


MessagePart = Union[TextPart, ImagePart, FilePart, ToolCallPart, SourcePart]


@dataclass(slots=True, frozen=True)
class Attachment:
    """File attached to a user message in the composer."""

    name: str
    mime_type: str
    data: str
    kind: Literal["image", "file"] = "file"

    def to_part(self) -> ImagePart | FilePart:
        if self.kind == "image":
            return ImagePart(image=self.data)
        return FilePart(name=self.name or DEFAULT_FILE_NAME, mime_type=self.mime_type or DEFAULT_MIME_TYPE, data=self.data)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "type": self.mime_type, "data": self.data, "kind": self.kind}

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> Attachment:
        mime_type = str(payload.get("mimeType") or payload.get("type") or payload.get("contentType") or DEFAULT_MIME_TYPE)
        kind = payload.get("kind") or ("image" if mime_type.startswith("image/") else "file")
        return cls(
            name=str(payload.get("name") or DEFAULT_FILE_NAME),
            mime_type=mime_type,
            data=str(payload.get("data") or payload.get("content") or ""),
            kind="image" if kind == "image" else "file",
        )


@dataclass(slots=True)
class ChatMessage:
    """One message of the conversation handed to the turn orchestrator."""

    role: ChatRole
    content: list[MessagePart] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    attachments: list[Attachment] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def user(cls, text: str, *, attachments: Sequence[Attachment] = (), **metadata: Any) -> ChatMessage:
        return cls(role="user", content=[TextPart(text)], attachments=list(attachments), metadata=metadata)

    @classmethod
    def assistant(cls, *parts: MessagePart, **metadata: Any) -> ChatMessage:
        return cls(role="assistant", content=list(parts), metadata=metadata)

    @classmethod
    def from_mapping(cls, payload: Mapping[str, Any]) -> ChatMessage:
        """Build a message from the UI's JSON representation."""

        raw_content = payload.get("content", payload.get("parts"))
        if isinstance(raw_content, str):
            parts: list[MessagePart] = [TextPart(raw_content)]
        else:
            parts = [part for part in (part_from_mapping(item) for item in raw_content or ()) if part is not None]
        attachments = [Attachment.from_mapping(item) for item in payload.get("attachments") or () if isinstance(item, Mapping)]
        role = payload.get("role", "user")
        return cls(
            role=role if role in ("user", "assistant", "system") else "user",
            content=parts,
            id=str(payload.get("id") or uuid.uuid4().hex),
            attachments=attachments,
            metadata=dict(payload.get("metadata") or {}),
        )

    @property
    def text(self) -> str:
        """Return the first text part, which carries the user's typed message."""

        for part in self.content:
            if isinstance(part, TextPart):
                return part.text
        return ""

    def tool_calls(self, tool_name: str | None = None) -> list[ToolCallPart]:
        return [
            part
            for part in self.content
            if isinstance(part, ToolCallPart) and (tool_name is None or part.tool_name == tool_name)
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the message for persistence."""

        return {
            "id": self.id,
            "role": self.role,
            "content": [part.to_dict() for part in self.content],
            "attachments": [item.to_dict() for item in self.attachments],
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }


def part_from_mapping(payload: Mapping[str, Any]) -> MessagePart | None:
    """Convert one JSON part into its dataclass; unknown part types yield ``None``."""

    kind = payload.get("type")
    if kind == "text":
        return TextPart(str(payload.get("text") or ""))
    if kind == "image":
        return ImagePart(str(payload.get("image") or ""))
    if kind == "file":
        return FilePart(
            name=str(payload.get("name") or DEFAULT_FILE_NAME),
            mime_type=str(payload.get("mimeType") or DEFAULT_MIME_TYPE),
            data=str(payload.get("data") or ""),
        )
    if kind == "tool-call":
        return ToolCallPart(
            call_id=str(payload.get("toolCallId") or payload.get("call_id") or ""),
            tool_name=str(payload.get("toolName") or payload.get("tool_name") or ""),
            args=dict(payload.get("args") or {}),
            result=payload.get("result"),
        )
    if kind == "source":
        return SourcePart(
            id=str(payload.get("id") or ""),
            url=str(payload.get("url") or ""),
            title=payload.get("title"),
            parent_id=payload.get("parentId"),
        )
    return None
