"""Core type definitions for stream reconstruction.

Snapshots are immutable: every call that produces one copies the current
state, so a consumer can hold on to an older snapshot while the stream keeps
moving. Only the most recent snapshot of a turn is authoritative.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Sequence

from ...chat.message_model import MessagePart, SourcePart, TextPart, ToolCallPart
from ..errors import ToolResultAlreadySet

__all__ = [
    "ProgressStage",
    "Progress",
    "ToolCallRecord",
    "Snapshot",
    "TurnCompletion",
]


# -----------------------------------------------------------------------------
# Progress
# -----------------------------------------------------------------------------


class ProgressStage(str, Enum):
    """Stage of the turn as reported to the UI."""

    CLASSIFYING = "classifying"
    SEARCHING = "searching"
    SUMMARIZING = "summarizing"
    GENERATING = "generating"
    GENERATING_IMAGE = "generating_image"
    COMPLETE = "complete"
    ERROR = "error"


@dataclass(slots=True, frozen=True)
class Progress:
    """Progress indicator carried by every snapshot.

    Attributes:
        stage: Current stage of the turn.
        message: Human-readable status line sent by the backend.
        intent: Intent declared by the backend classifier, if any.
        reasoning: Classifier reasoning, if the backend sent one.
        result_count: Number of search results once a search completed.
    """

    stage: ProgressStage = ProgressStage.CLASSIFYING
    message: str = "Analysiere Anfrage..."
    intent: str | None = None
    reasoning: str | None = None
    result_count: int | None = None

    def advance(self, stage: ProgressStage | None = None, message: str | None = None, **changes: Any) -> Progress:
        if stage is not None:
            changes["stage"] = stage
        if message is not None:
            changes["message"] = message
        return replace(self, **changes)


# -----------------------------------------------------------------------------
# Tool calls
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class ToolCallRecord:
    """A tool invocation reconstructed from the stream.

    The result is write-once: :meth:`attach_result` refuses to overwrite it.
    """

    call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)
    _result: Any = field(default=None, repr=False)
    _resolved: bool = field(default=False, repr=False)

    @property
    def result(self) -> Any:
        return self._result

    @property
    def is_resolved(self) -> bool:
        return self._resolved

    def attach_result(self, result: Any) -> None:
        if self._resolved:
            raise ToolResultAlreadySet(self.call_id)
        self._result = result
        self._resolved = True

    def as_part(self) -> ToolCallPart:
        return ToolCallPart(
            call_id=self.call_id,
            tool_name=self.tool_name,
            args=dict(self.args),
            result=self._result if self._resolved else None,
        )


# -----------------------------------------------------------------------------
# Snapshot
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class Snapshot:
    """One complete reconstruction of the turn at a point in the stream.

    Attributes:
        content: Tool calls, then derived sources, then the accumulated text.
        progress: Progress indicator.
        metadata: Search results, citations, generated image, stream
            metadata, thread id and indexed document ids when present.
        requires_action: True once the stream finished on a
            human-in-the-loop interrupt.
    """

    content: tuple[MessagePart, ...]
    progress: Progress
    metadata: Mapping[str, Any] = field(default_factory=dict)
    requires_action: bool = False

    @property
    def text(self) -> str:
        for part in reversed(self.content):
            if isinstance(part, TextPart):
                return part.text
        return ""

    @property
    def tool_calls(self) -> tuple[ToolCallPart, ...]:
        return tuple(part for part in self.content if isinstance(part, ToolCallPart))

    @property
    def sources(self) -> tuple[SourcePart, ...]:
        return tuple(part for part in self.content if isinstance(part, SourcePart))

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "content": [part.to_dict() for part in self.content],
            "progress": {
                "stage": self.progress.stage.value,
                "message": self.progress.message,
            },
            "metadata": {"custom": dict(self.metadata)},
        }
        for key in ("intent", "reasoning", "result_count"):
            value = getattr(self.progress, key)
            if value is not None:
                payload["progress"][key] = value
        if self.requires_action:
            payload["status"] = {"type": "requires-action", "reason": "interrupt"}
        return payload


@dataclass(slots=True, frozen=True)
class TurnCompletion:
    """Aggregate data handed to the completion callback after a normal finish."""

    thread_id: str | None
    stream_metadata: Mapping[str, Any] | None
    citations: Sequence[Mapping[str, Any]] = ()
    indexed_document_ids: Sequence[str] = ()
    snapshot: Snapshot | None = None
