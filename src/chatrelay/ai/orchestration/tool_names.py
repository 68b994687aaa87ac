"""Explicit translation tables between backend and public tool vocabularies.

New internal tools need a visible entry here; names are never derived by
string transformation.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Mapping

from ...chat.message_model import HUMAN_QUESTION_TOOL

__all__ = [
    "INTERNAL_TOOL_NAMES",
    "INTENT_TOOL_NAMES",
    "SEARCH_SOURCE_TOOL_NAMES",
    "public_tool_name",
    "tool_for_intent",
    "tool_for_source",
]

LOGGER = logging.getLogger(__name__)

INTERNAL_TOOL_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "search_documents": "gruenerator_search",
        "web_search": "web_search",
        "research": "research",
        "search_examples": "gruenerator_examples_search",
        "person_search": "gruenerator_person_search",
        "generate_image": "generate_image",
        "scrape_url": "scrape_url",
        "recall_memory": "recall_memory",
        "save_memory": "save_memory",
        "ask_human": HUMAN_QUESTION_TOOL,
    }
)

INTENT_TOOL_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "search": "gruenerator_search",
        "web": "web_search",
        "person": "web_search",
        "research": "research",
        "examples": "gruenerator_examples_search",
    }
)

SEARCH_SOURCE_TOOL_NAMES: Mapping[str, str] = MappingProxyType(
    {
        "documents": "gruenerator_search",
        "gruenerator": "gruenerator_search",
        "web": "web_search",
        "research": "research",
        "examples": "gruenerator_examples_search",
        "person": "gruenerator_person_search",
    }
)

_warned: set[str] = set()


def public_tool_name(internal_name: str) -> str:
    """Translate a backend tool identifier into the public vocabulary.

    Unknown names pass through unchanged and are logged once so the missing
    table entry gets noticed.
    """

    mapped = INTERNAL_TOOL_NAMES.get(internal_name)
    if mapped is not None:
        return mapped
    if internal_name not in _warned:
        _warned.add(internal_name)
        LOGGER.warning("No public tool mapping for internal tool '%s'; passing it through", internal_name)
    return internal_name


def tool_for_intent(intent: str) -> str | None:
    return INTENT_TOOL_NAMES.get(intent)


def tool_for_source(source: str, fallback: str) -> str:
    return SEARCH_SOURCE_TOOL_NAMES.get(source, fallback)
