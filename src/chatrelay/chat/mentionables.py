"""Catalog of addressable agents, tools, notebooks and documents.

The registry maps lower-cased aliases to :class:`Mentionable` entries. Built-in
entries always win over dynamically registered ones that share an alias, so a
custom agent called ``presse`` can never hijack the press agent. Document
back-references inserted by a file picker live in a separate, session-scoped
slug map.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Literal, Mapping, Sequence

__all__ = [
    "MentionableType",
    "Mentionable",
    "DocumentDescriptor",
    "MentionableRegistry",
    "BUILTIN_MENTIONABLES",
    "DOCUMENT_PLACEHOLDER_ALIAS",
    "DOCUMENT_CHAT_PLACEHOLDER_ALIAS",
    "mentionables_from_records",
]

LOGGER = logging.getLogger(__name__)

Trigger = Literal["@", "/"]
SourceKind = Literal["document", "text"]

DOCUMENT_PLACEHOLDER_ALIAS = "datei"
DOCUMENT_CHAT_PLACEHOLDER_ALIAS = "dokumentchat"


class MentionableType(str, Enum):
    """Kinds of things a mention can address."""

    AGENT = "agent"
    TOOL = "tool"
    NOTEBOOK = "notebook"
    DOCUMENT = "document"


@dataclass(slots=True, frozen=True)
class Mentionable:
    """One addressable entry of the registry."""

    type: MentionableType
    identifier: str
    alias: str
    trigger: Trigger = "@"
    context_prefix: str | None = None
    title: str | None = None
    builtin: bool = False

    @property
    def key(self) -> str:
        return self.alias.strip().lower()


@dataclass(slots=True, frozen=True)
class DocumentDescriptor:
    """Document picked in the composer and referenced as ``@datei:<slug>``."""

    slug: str
    document_id: str
    title: str = ""
    source_kind: SourceKind = "document"


def _agent(alias: str, identifier: str, title: str) -> Mentionable:
    return Mentionable(MentionableType.AGENT, identifier, alias, "@", title=title, builtin=True)


def _tool(alias: str, identifier: str, title: str, context_prefix: str | None = None) -> Mentionable:
    return Mentionable(
        MentionableType.TOOL, identifier, alias, "@", context_prefix=context_prefix, title=title, builtin=True
    )


BUILTIN_MENTIONABLES: tuple[Mentionable, ...] = (
    _agent("universal", "gruenerator-universal", "Universal Assistent"),
    _agent("presse", "gruenerator-oeffentlichkeitsarbeit", "Presse & Social Media"),
    _agent("oeffentlichkeitsarbeit", "gruenerator-oeffentlichkeitsarbeit", "Öffentlichkeitsarbeit"),
    _agent("antrag", "gruenerator-antrag", "Anträge"),
    _agent("rede", "gruenerator-rede-schreiber", "Reden"),
    _agent("jugend", "gruenerator-gruene-jugend", "Grüne Jugend"),
    _agent("buergerservice", "gruenerator-buergerservice", "Bürgerservice"),
    _agent("wahlprogramm", "gruenerator-wahlprogramm", "Wahlprogramm"),
    _tool("websuche", "web", "Websuche"),
    _tool("recherche", "research", "Recherche"),
    _tool("suche", "search", "Dokumentensuche"),
    _tool("beispiele", "examples", "Beispiele"),
    _tool("bild", "image", "Bild generieren", context_prefix="Erstelle ein Bild:"),
    Mentionable(
        MentionableType.DOCUMENT,
        "datei-trigger",
        DOCUMENT_PLACEHOLDER_ALIAS,
        "@",
        title="Datei auswählen",
        builtin=True,
    ),
    _tool(DOCUMENT_CHAT_PLACEHOLDER_ALIAS, "documentchat", "Mit Dokumenten chatten"),
)


class MentionableRegistry:
    """Alias index over built-in and dynamically registered mentionables."""

    def __init__(self, builtins: Iterable[Mentionable] = BUILTIN_MENTIONABLES) -> None:
        self._builtins: tuple[Mentionable, ...] = tuple(builtins)
        self._dynamic: tuple[Mentionable, ...] = ()
        self._index: dict[str, Mentionable] = {}
        self._documents: dict[str, DocumentDescriptor] = {}
        self._rebuild()

    # ------------------------------------------------------------------
    # Alias resolution
    # ------------------------------------------------------------------
    def resolve(self, alias: str) -> Mentionable | None:
        """Return the entry registered under ``alias`` (case-insensitive)."""

        key = (alias or "").strip().lower()
        if not key:
            return None
        return self._index.get(key)

    def register_dynamic(self, items: Iterable[Mentionable]) -> int:
        """Replace the dynamic entries and rebuild the alias index.

        Returns the number of dynamic entries that ended up in the index.
        """

        self._dynamic = tuple(items)
        return self._rebuild()

    def entries(self) -> tuple[Mentionable, ...]:
        """Return all indexed entries, built-ins first."""

        return tuple(self._index.values())

    def filter(self, query: str, *, trigger: Trigger | None = None, limit: int = 20) -> list[Mentionable]:
        """Return entries whose alias or title matches ``query``.

        Prefix matches on the alias rank ahead of substring matches. With
        ``trigger="/"`` only agents are offered, mirroring how the parser
        resolves slash tokens.
        """

        needle = (query or "").strip().lower()
        prefix: list[Mentionable] = []
        contains: list[Mentionable] = []
        for entry in self.entries():
            if trigger == "/" and entry.type is not MentionableType.AGENT:
                continue
            title = (entry.title or "").lower()
            if entry.key.startswith(needle):
                prefix.append(entry)
            elif needle in entry.key or (needle and needle in title):
                contains.append(entry)
        return (prefix + contains)[: max(0, limit)]

    def _rebuild(self) -> int:
        index: dict[str, Mentionable] = {}
        for entry in self._builtins:
            index.setdefault(entry.key, entry)
        accepted = 0
        for entry in self._dynamic:
            key = entry.key
            if not key:
                continue
            existing = index.get(key)
            if existing is not None and existing.builtin:
                LOGGER.debug("Dynamic mentionable '%s' shadows a built-in alias; skipped", key)
                continue
            index[key] = entry
            accepted += 1
        self._index = index
        return accepted

    # ------------------------------------------------------------------
    # Document back-references
    # ------------------------------------------------------------------
    def register_document_reference(self, slug: str, descriptor: DocumentDescriptor) -> None:
        key = (slug or "").strip().lower()
        if not key:
            raise ValueError("slug is required to register a document reference")
        self._documents[key] = descriptor

    def resolve_document_reference(self, slug: str) -> DocumentDescriptor | None:
        return self._documents.get((slug or "").strip().lower())

    def clear_document_references(self) -> None:
        self._documents.clear()

    def document_references(self) -> Mapping[str, DocumentDescriptor]:
        return dict(self._documents)


def mentionables_from_records(records: Sequence[Mapping[str, object]]) -> list[Mentionable]:
    """Convert validated catalog records into :class:`Mentionable` entries."""

    converted: list[Mentionable] = []
    for record in records:
        converted.append(
            Mentionable(
                type=MentionableType(str(record["type"])),
                identifier=str(record["identifier"]),
                alias=str(record["alias"]),
                trigger="/" if record.get("trigger") == "/" else "@",
                context_prefix=_optional_str(record.get("contextPrefix")),
                title=_optional_str(record.get("title")),
            )
        )
    return converted


def _optional_str(value: object) -> str | None:
    if value in (None, ""):
        return None
    return str(value)
