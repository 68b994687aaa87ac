"""Parsing of inline mention directives in chat text."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from .mentionables import (
    DOCUMENT_CHAT_PLACEHOLDER_ALIAS,
    DOCUMENT_PLACEHOLDER_ALIAS,
    MentionableRegistry,
    MentionableType,
)

__all__ = ["MentionSpan", "ParsedMentions", "parse_mentions", "strip_spans"]

LOGGER = logging.getLogger(__name__)

# A trigger counts only at start-of-text or after whitespace, so e-mail
# addresses and URL paths such as "https://host/tool" never match. The token
# runs until the next whitespace character.
_TOKEN_RE = re.compile(r"(?<!\S)(?P<trigger>[@/])(?P<token>\S+)")
_DOCUMENT_REF_RE = re.compile(rf"^{DOCUMENT_PLACEHOLDER_ALIAS}:(?P<slug>\S+)$", re.IGNORECASE)
_WHITESPACE_RUN_RE = re.compile(r"\s{2,}")
_TRAILING_PUNCTUATION = ".,;:!?)]}\"'"
_PLACEHOLDER_ALIASES = frozenset({DOCUMENT_PLACEHOLDER_ALIAS, DOCUMENT_CHAT_PLACEHOLDER_ALIAS})


@dataclass(slots=True, frozen=True)
class MentionSpan:
    """Character span of a recognised mention token."""

    start: int
    end: int
    trigger: str
    alias: str
    kind: str
    identifier: str | None = None


@dataclass(slots=True)
class ParsedMentions:
    """Routing data extracted from one chat message."""

    agent_id: str
    clean_text: str
    notebook_ids: list[str] = field(default_factory=list)
    forced_tools: list[str] = field(default_factory=list)
    document_ids: list[str] = field(default_factory=list)
    text_ids: list[str] = field(default_factory=list)
    spans: list[MentionSpan] = field(default_factory=list)

    @property
    def agent_overridden(self) -> bool:
        return any(span.kind == MentionableType.AGENT.value for span in self.spans)


def parse_mentions(text: str, registry: MentionableRegistry, *, default_agent_id: str) -> ParsedMentions:
    """Scan ``text`` for mentions and return routing data plus sanitized text.

    Unresolved tokens stay in the text untouched.
    """

    source = text or ""
    result = ParsedMentions(agent_id=default_agent_id, clean_text="")

    for match in _TOKEN_RE.finditer(source):
        span = _resolve_token(match.group("token"), match.group("trigger"), match.start(), registry, result)
        if span is not None:
            result.spans.append(span)

    result.clean_text = strip_spans(source, result.spans)
    if result.spans:
        LOGGER.debug(
            "Parsed %d mention(s): agent=%s notebooks=%s tools=%s documents=%s texts=%s",
            len(result.spans),
            result.agent_id,
            result.notebook_ids,
            result.forced_tools,
            result.document_ids,
            result.text_ids,
        )
    return result


def strip_spans(text: str, spans: list[MentionSpan]) -> str:
    """Remove ``spans`` from ``text`` and normalise the remaining whitespace.

    Spans are cut from the highest start offset downwards so earlier offsets
    stay valid while the string shrinks.
    """

    cleaned = text
    for span in sorted(spans, key=lambda item: item.start, reverse=True):
        cleaned = cleaned[: span.start] + cleaned[span.end :]
    return _WHITESPACE_RUN_RE.sub(" ", cleaned).strip()


def _resolve_token(
    token: str,
    trigger: str,
    start: int,
    registry: MentionableRegistry,
    result: ParsedMentions,
) -> MentionSpan | None:
    # Trailing punctuation ("@presse,") is tried off the token before giving up.
    candidates = [token]
    trimmed = token.rstrip(_TRAILING_PUNCTUATION)
    if trimmed and trimmed != token:
        candidates.append(trimmed)

    for candidate in candidates:
        end = start + 1 + len(candidate)
        lowered = candidate.lower()

        if trigger == "@":
            doc_match = _DOCUMENT_REF_RE.match(candidate)
            if doc_match is not None:
                span = _resolve_document_reference(doc_match.group("slug"), start, end, registry, result)
                if span is not None:
                    return span
                continue
            if lowered in _PLACEHOLDER_ALIASES:
                return MentionSpan(start, end, trigger, lowered, "placeholder")

        entry = registry.resolve(candidate)
        if entry is None:
            continue
        if trigger == "/":
            if entry.type is not MentionableType.AGENT:
                continue
            result.agent_id = entry.identifier
        elif entry.type is MentionableType.AGENT:
            result.agent_id = entry.identifier
        elif entry.type is MentionableType.TOOL:
            _append_unique(result.forced_tools, entry.identifier)
        elif entry.type is MentionableType.NOTEBOOK:
            _append_unique(result.notebook_ids, entry.identifier)
        else:
            continue
        return MentionSpan(start, end, trigger, entry.key, entry.type.value, entry.identifier)
    return None


def _resolve_document_reference(
    slug: str,
    start: int,
    end: int,
    registry: MentionableRegistry,
    result: ParsedMentions,
) -> MentionSpan | None:
    descriptor = registry.resolve_document_reference(slug)
    if descriptor is None:
        LOGGER.debug("Document reference '%s' is not registered in this session", slug)
        return None
    if descriptor.source_kind == "text":
        _append_unique(result.text_ids, descriptor.document_id)
    else:
        _append_unique(result.document_ids, descriptor.document_id)
    return MentionSpan(
        start,
        end,
        "@",
        slug.lower(),
        MentionableType.DOCUMENT.value,
        descriptor.document_id,
    )


def _append_unique(target: list[str], value: str) -> None:
    if value not in target:
        target.append(value)
