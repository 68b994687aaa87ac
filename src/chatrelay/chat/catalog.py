"""Loads dynamic mentionables (custom agents, notebooks) from catalog endpoints."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable, Mapping, Sequence

import httpx
from jsonschema import Draft7Validator
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..ai.errors import TransportError
from ..services.settings import Settings
from .mentionables import Mentionable, MentionableRegistry, mentionables_from_records

__all__ = ["CatalogClient", "MENTIONABLE_SCHEMA", "validate_records"]

LOGGER = logging.getLogger(__name__)

MENTIONABLE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["type", "identifier", "alias"],
    "properties": {
        "type": {"type": "string", "enum": ["agent", "tool", "notebook", "document"]},
        "identifier": {"type": "string", "minLength": 1},
        "alias": {"type": "string", "pattern": r"^\S+$"},
        "trigger": {"type": "string", "enum": ["@", "/"]},
        "title": {"type": ["string", "null"]},
        "contextPrefix": {"type": ["string", "null"]},
    },
    "additionalProperties": True,
}
_VALIDATOR = Draft7Validator(MENTIONABLE_SCHEMA)
_SLUG_STRIP_RE = re.compile(r"[^\w-]+", re.UNICODE)
_SLUG_SPACE_RE = re.compile(r"\s+")


def validate_records(records: Iterable[Any]) -> list[dict[str, Any]]:
    """Return the records that satisfy :data:`MENTIONABLE_SCHEMA`; log the rest."""

    valid: list[dict[str, Any]] = []
    for record in records:
        errors = sorted(_VALIDATOR.iter_errors(record), key=lambda err: list(err.path))
        if errors:
            LOGGER.debug("Skipping catalog entry %r: %s", record, errors[0].message)
            continue
        valid.append(dict(record))
    return valid


class CatalogClient:
    """Fetches catalog entries and feeds them into a :class:`MentionableRegistry`."""

    def __init__(self, settings: Settings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url,
            timeout=settings.request_timeout,
            headers=self._headers(settings),
        )
        self._owns_client = client is None

    async def refresh(self, registry: MentionableRegistry) -> list[Mentionable]:
        """Reload custom agents and notebooks and rebuild the registry's dynamic set."""

        endpoints = self._settings.endpoints
        agents = await self._fetch(endpoints.catalog_agents)
        notebooks = await self._fetch(endpoints.catalog_notebooks)
        records = [_normalize_agent(item) for item in agents] + [_normalize_notebook(item) for item in notebooks]
        items = mentionables_from_records(validate_records(record for record in records if record))
        accepted = registry.register_dynamic(items)
        LOGGER.info("Catalog refresh registered %d of %d dynamic mentionable(s)", accepted, len(items))
        return items

    async def _fetch(self, path: str) -> list[Mapping[str, Any]]:
        async for attempt in self._retrying():
            with attempt:
                try:
                    response = await self._client.get(path)
                except httpx.HTTPError as exc:
                    raise TransportError(f"Catalog request to {path} failed: {exc}") from exc
                if response.is_error:
                    raise TransportError(
                        f"Catalog request to {path} failed with HTTP {response.status_code}",
                        status_code=response.status_code,
                    )
                return _extract_items(response.json())
        return []  # pragma: no cover - AsyncRetrying re-raises on exhaustion

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.catalog_max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.catalog_retry_min_seconds,
                max=self._settings.catalog_retry_max_seconds,
            ),
            retry=retry_if_exception_type(TransportError),
        )

    @staticmethod
    def _headers(settings: Settings) -> dict[str, str]:
        headers = dict(settings.default_headers)
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"
        return headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def _extract_items(payload: Any) -> list[Mapping[str, Any]]:
    if isinstance(payload, Mapping):
        for key in ("items", "data", "generators", "collections"):
            value = payload.get(key)
            if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
                payload = value
                break
        else:
            return []
    if not isinstance(payload, Sequence) or isinstance(payload, (str, bytes)):
        return []
    return [item for item in payload if isinstance(item, Mapping)]


def _normalize_agent(item: Mapping[str, Any]) -> dict[str, Any] | None:
    identifier = item.get("identifier") or item.get("id")
    alias = item.get("mention") or item.get("slug") or slugify(str(item.get("name") or ""))
    if not identifier or not alias:
        return None
    return {
        "type": "agent",
        "identifier": str(identifier),
        "alias": str(alias),
        "trigger": "/",
        "title": item.get("name") or item.get("title"),
    }


def _normalize_notebook(item: Mapping[str, Any]) -> dict[str, Any] | None:
    identifier = item.get("id")
    alias = item.get("mention") or slugify(str(item.get("name") or ""))
    if not identifier or not alias:
        return None
    return {
        "type": "notebook",
        "identifier": str(identifier),
        "alias": str(alias),
        "title": item.get("name"),
        "contextPrefix": item.get("contextPrefix"),
    }


def slugify(value: str) -> str:
    """Lower-case ``value`` and turn it into a whitespace-free alias."""

    collapsed = _SLUG_SPACE_RE.sub("-", value.strip().lower())
    return _SLUG_STRIP_RE.sub("", collapsed).strip("-")
