"""Conversation-scoped document references used for document chat."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping, Protocol

from .settings import _SETTINGS_DIR

__all__ = [
    "DocumentChatScope",
    "DocumentReferenceStore",
    "InMemoryDocumentReferenceStore",
    "JsonDocumentReferenceStore",
]

LOGGER = logging.getLogger(__name__)
_STORE_FILENAME = "document_refs.json"
_STORE_VERSION = 1


@dataclass(slots=True, frozen=True)
class DocumentChatScope:
    """Documents a conversation chats with, plus the backend's chat mode."""

    document_ids: tuple[str, ...] = ()
    mode: str | None = None

    def __bool__(self) -> bool:
        return bool(self.document_ids)


_EMPTY_SCOPE = DocumentChatScope()


class DocumentReferenceStore(Protocol):
    def get(self, conversation_id: str) -> DocumentChatScope:
        ...

    def add(self, conversation_id: str, document_ids: Iterable[str], *, mode: str | None = None) -> DocumentChatScope:
        ...

    def remove(self, conversation_id: str, document_id: str) -> DocumentChatScope:
        ...

    def clear(self, conversation_id: str) -> None:
        ...


def _merged(scope: DocumentChatScope, document_ids: Iterable[str], mode: str | None) -> DocumentChatScope:
    ids = list(scope.document_ids)
    for document_id in document_ids:
        if document_id and document_id not in ids:
            ids.append(document_id)
    return DocumentChatScope(tuple(ids), mode if mode is not None else scope.mode)


class InMemoryDocumentReferenceStore:
    """Keeps document references for the lifetime of the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._scopes: Dict[str, DocumentChatScope] = {}

    def get(self, conversation_id: str) -> DocumentChatScope:
        with self._lock:
            return self._scopes.get(conversation_id, _EMPTY_SCOPE)

    def add(self, conversation_id: str, document_ids: Iterable[str], *, mode: str | None = None) -> DocumentChatScope:
        with self._lock:
            scope = _merged(self._scopes.get(conversation_id, _EMPTY_SCOPE), document_ids, mode)
            self._scopes[conversation_id] = scope
            self._changed()
            return scope

    def remove(self, conversation_id: str, document_id: str) -> DocumentChatScope:
        with self._lock:
            scope = self._scopes.get(conversation_id, _EMPTY_SCOPE)
            remaining = tuple(item for item in scope.document_ids if item != document_id)
            if remaining:
                scope = DocumentChatScope(remaining, scope.mode)
                self._scopes[conversation_id] = scope
            else:
                scope = _EMPTY_SCOPE
                self._scopes.pop(conversation_id, None)
            self._changed()
            return scope

    def clear(self, conversation_id: str) -> None:
        with self._lock:
            if self._scopes.pop(conversation_id, None) is not None:
                self._changed()

    def _changed(self) -> None:
        """Hook for subclasses; called with the lock held after every mutation."""


class JsonDocumentReferenceStore(InMemoryDocumentReferenceStore):
    """Persists document references to a JSON file next to the settings."""

    def __init__(self, path: Path | None = None) -> None:
        super().__init__()
        self._path = path or (_SETTINGS_DIR / _STORE_FILENAME)
        self._scopes.update(self._read_payload())

    @property
    def path(self) -> Path:
        return self._path

    def _changed(self) -> None:
        payload = {
            "version": _STORE_VERSION,
            "conversations": {
                key: {"document_ids": list(scope.document_ids), "mode": scope.mode}
                for key, scope in self._scopes.items()
            },
        }
        body = json.dumps(payload, indent=2, sort_keys=True)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")
        tmp_path.write_text(body, encoding="utf-8")
        tmp_path.replace(self._path)

    def _read_payload(self) -> Dict[str, DocumentChatScope]:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            LOGGER.warning("Document reference store %s is not valid JSON: %s", self._path, exc)
            return {}
        conversations = data.get("conversations") if isinstance(data, Mapping) else None
        if not isinstance(conversations, Mapping):
            return {}
        scopes: Dict[str, DocumentChatScope] = {}
        for key, entry in conversations.items():
            scope = _coerce_scope(entry)
            if isinstance(key, str) and scope:
                scopes[key] = scope
        return scopes


def _coerce_scope(value: Any) -> DocumentChatScope:
    if not isinstance(value, Mapping):
        return _EMPTY_SCOPE
    ids = value.get("document_ids")
    if not isinstance(ids, list):
        return _EMPTY_SCOPE
    mode = value.get("mode")
    return DocumentChatScope(
        tuple(str(item) for item in ids if item),
        str(mode) if isinstance(mode, str) and mode else None,
    )
