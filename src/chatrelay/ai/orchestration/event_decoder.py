"""Incremental decoder for the newline-delimited event stream.

Each logical record is an ``event: <name>`` line followed by a
``data: <json>`` line. Blank separator lines are tolerated but not required.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import Any

__all__ = ["DecodedEvent", "EventDecoder"]

LOGGER = logging.getLogger(__name__)

_EVENT_PREFIX = "event: "
_DATA_PREFIX = "data: "


@dataclass(slots=True, frozen=True)
class DecodedEvent:
    """One ``(event, data)`` record taken off the wire."""

    event: str
    data: Any


class EventDecoder:
    """Turns successive byte chunks into :class:`DecodedEvent` records.

    The unterminated trailing line is kept between :meth:`feed` calls. A payload
    line holding invalid JSON is dropped without raising so one malformed
    chunk does not end the stream.
    """

    def __init__(self) -> None:
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._pending_event = ""
        self.dropped_frames = 0

    def feed(self, chunk: bytes | str) -> list[DecodedEvent]:
        text = self._utf8.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
        if not text:
            return []
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        records: list[DecodedEvent] = []
        for line in lines:
            record = self._parse_line(line.rstrip("\r"))
            if record is not None:
                records.append(record)
        return records

    def close(self) -> list[DecodedEvent]:
        """Finish the stream.

        A trailing line that never received its newline is discarded.
        """

        tail = self._buffer + self._utf8.decode(b"", final=True)
        if tail.strip():
            LOGGER.debug("Discarding unterminated trailing line (%d chars) at stream end", len(tail))
        self._buffer = ""
        self._pending_event = ""
        return []

    @property
    def pending_event(self) -> str:
        return self._pending_event

    def _parse_line(self, line: str) -> DecodedEvent | None:
        if line.startswith(_EVENT_PREFIX):
            self._pending_event = line[len(_EVENT_PREFIX) :].strip()
            return None
        if not line.startswith(_DATA_PREFIX):
            return None
        try:
            data = json.loads(line[len(_DATA_PREFIX) :])
        except json.JSONDecodeError:
            self.dropped_frames += 1
            LOGGER.debug("Dropping malformed payload line for event '%s'", self._pending_event or "?")
            return None
        event, self._pending_event = self._pending_event, ""
        if not event:
            LOGGER.debug("Dropping payload line without a preceding event name")
            return None
        return DecodedEvent(event=event, data=data)
