"""Helpers that assemble outbound JSON bodies for the agent backend."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Mapping, Sequence

from ...chat.message_model import (
    DEFAULT_FILE_NAME,
    DEFAULT_MIME_TYPE,
    Attachment,
    ChatMessage,
    FilePart,
    ImagePart,
    TextPart,
)
from ...chat.mentions import ParsedMentions

__all__ = [
    "serialize_messages",
    "merge_attachments",
    "latest_user_index",
    "apply_clean_text",
    "build_chat_request",
    "build_resume_request",
]


def serialize_messages(messages: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
    """Normalize chat messages into ``{id, role, parts}`` wire records.

    Only text, image and file parts travel to the backend. A message left
    without parts is sent with one empty text part.
    """

    formatted: List[Dict[str, Any]] = []
    for message in messages:
        parts: List[Dict[str, Any]] = []
        for part in message.content:
            if isinstance(part, TextPart):
                parts.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                parts.append({"type": "image", "image": part.image})
            elif isinstance(part, FilePart):
                parts.append(
                    {
                        "type": "file",
                        "name": part.name or DEFAULT_FILE_NAME,
                        "mimeType": part.mime_type or DEFAULT_MIME_TYPE,
                        "data": part.data,
                    }
                )
        if not parts:
            parts.append({"type": "text", "text": ""})
        formatted.append({"id": message.id, "role": message.role, "parts": parts})
    return formatted


def latest_user_index(formatted: Sequence[Mapping[str, Any]]) -> int | None:
    for index in range(len(formatted) - 1, -1, -1):
        if formatted[index].get("role") == "user":
            return index
    return None


def merge_attachments(
    formatted: List[Dict[str, Any]],
    messages: Sequence[ChatMessage],
) -> List[Dict[str, Any]]:
    """Copy attachments of the newest user message into its parts.

    Returns the attachment records for the request's ``attachments`` list.
    """

    index = latest_user_index(formatted)
    if index is None:
        return []
    attachments: Iterable[Attachment] = messages[index].attachments
    records: List[Dict[str, Any]] = []
    parts = formatted[index]["parts"]
    for attachment in attachments:
        records.append(attachment.to_dict())
        part = attachment.to_part()
        if isinstance(part, ImagePart):
            parts.append({"type": "image", "image": part.image})
        else:
            parts.append({"type": "file", "name": part.name, "mimeType": part.mime_type, "data": part.data})
    return records


def apply_clean_text(formatted: List[Dict[str, Any]], clean_text: str) -> None:
    """Replace the first text part of the newest user message."""

    index = latest_user_index(formatted)
    if index is None:
        return
    for part in formatted[index]["parts"]:
        if part.get("type") == "text":
            part["text"] = clean_text
            return


def build_chat_request(
    formatted: Sequence[Mapping[str, Any]],
    *,
    agent_id: str,
    thread_id: str | None,
    enabled_tools: Mapping[str, bool],
    model_id: str,
    mentions: ParsedMentions | None = None,
    attachments: Sequence[Mapping[str, Any]] = (),
    document_chat_ids: Sequence[str] = (),
    document_chat_mode: str | None = None,
    default_notebook_id: str | None = None,
) -> Dict[str, Any]:
    """Assemble the body posted to the chat stream endpoint.

    Optional keys are only present when they carry a value.
    """

    payload: Dict[str, Any] = {
        "messages": list(formatted),
        "agentId": agent_id,
        "threadId": thread_id,
        "enabledTools": dict(enabled_tools),
        "modelId": model_id,
    }
    optional: Dict[str, Any] = {"attachments": list(attachments)}
    if mentions is not None:
        optional.update(
            notebookIds=list(mentions.notebook_ids),
            forcedTools=list(mentions.forced_tools),
            documentIds=list(mentions.document_ids),
            textIds=list(mentions.text_ids),
        )
    optional["documentChatIds"] = list(document_chat_ids)
    if document_chat_ids:
        optional["documentChatMode"] = document_chat_mode
    optional["defaultNotebookId"] = default_notebook_id
    for key, value in optional.items():
        if value:
            payload[key] = value
    return payload


def build_resume_request(thread_id: str | None, answer: str) -> Dict[str, Any]:
    return {"threadId": thread_id, "resume": answer}
