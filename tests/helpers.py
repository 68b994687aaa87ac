"""Shared test helpers and stub classes.

Import from here instead of duplicating stream fixtures in individual test
files.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

from chatrelay.ai.errors import ChatRelayError
from chatrelay.ai.transport import AbortSignal


def frame(event: str, data: Any) -> str:
    """Return one wire record: the event line followed by its payload line."""

    return f"event: {event}\ndata: {json.dumps(data)}\n"


def encode_stream(*records: tuple[str, Any]) -> bytes:
    return "".join(frame(event, data) for event, data in records).encode("utf-8")


def chunked(payload: bytes, size: int) -> list[bytes]:
    return [payload[index : index + size] for index in range(0, len(payload), size)]


SCENARIO_B_RECORDS: tuple[tuple[str, Any], ...] = (
    ("intent", {"intent": "search", "message": "Suche in Dokumenten", "searchQuery": "Klimaschutz"}),
    ("search_start", {"message": "Durchsuche Quellen..."}),
    (
        "search_complete",
        {
            "message": "3 Ergebnisse gefunden",
            "resultCount": 3,
            "results": [
                {"source": "A", "title": "Eins", "content": "...", "url": "https://a.example"},
                {"source": "B", "title": "Zwei", "content": "...", "url": "https://b.example"},
                {"source": "C", "title": "Drei", "content": "...", "url": "https://c.example"},
            ],
        },
    ),
    ("text_delta", {"text": "Klimaschutz "}),
    ("text_delta", {"text": "ist "}),
    ("text_delta", {"text": "wichtig."}),
    (
        "done",
        {
            "threadId": "thread-1",
            "citations": [
                {"id": 1, "title": "Eins", "url": "https://a.example", "snippet": "..."},
                {"id": 2, "title": "Zwei", "url": "https://b.example", "snippet": "..."},
                {"id": 3, "title": "Drei", "url": "https://c.example", "snippet": "..."},
            ],
            "metadata": {"searchCount": 1, "documentsReceived": 3, "citationsExtracted": 3},
        },
    ),
)


class FakeTransport:
    """Transport stub replaying canned byte chunks and recording every request."""

    def __init__(
        self,
        chunks: Iterable[bytes] = (),
        *,
        error: ChatRelayError | None = None,
    ) -> None:
        self.chunks: list[bytes] = list(chunks)
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def queue(self, *chunks: bytes) -> None:
        self.chunks = list(chunks)

    @asynccontextmanager
    async def stream(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        abort: AbortSignal | None = None,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        self.calls.append((path, json.loads(json.dumps(payload))))
        if abort is not None:
            abort.raise_if_aborted()
        if self.error is not None:
            raise self.error
        chunks: Sequence[bytes] = list(self.chunks)

        async def _iterate() -> AsyncIterator[bytes]:
            for chunk in chunks:
                if abort is not None:
                    abort.raise_if_aborted()
                yield chunk

        yield _iterate()


async def collect(stream: AsyncIterator[Any]) -> list[Any]:
    return [item async for item in stream]
