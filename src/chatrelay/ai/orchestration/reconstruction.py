"""Stream reconstruction state machine.

:class:`StreamReconstructor` folds decoded records of an in-progress agent
turn into a running "message so far": tool calls, citation sources,
accumulated text and a progress indicator. :meth:`StreamReconstructor.apply`
returns a fresh :class:`~.types.Snapshot` for every content-affecting record
and ``None`` for side-channel records (thread creation, interrupts, document
indexing, the ``done`` record itself). :meth:`StreamReconstructor.finish`
produces the final snapshot once the stream has drained.

The human-in-the-loop signal is deliberately deferred: an ``interrupt``
record only raises an internal flag, and a snapshot is marked
``requires_action`` only after the stage reached ``complete``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Callable, Mapping, Sequence

from ...chat.message_model import MessagePart, SourcePart, TextPart
from ..errors import StreamProtocolError
from .event_decoder import DecodedEvent
from .tool_names import public_tool_name, tool_for_intent, tool_for_source
from .types import Progress, ProgressStage, Snapshot, ToolCallRecord

__all__ = ["StreamReconstructor", "INTENT_STAGES"]

LOGGER = logging.getLogger(__name__)

INTENT_STAGES: Mapping[str, ProgressStage] = {
    "search": ProgressStage.SEARCHING,
    "web": ProgressStage.SEARCHING,
    "research": ProgressStage.SEARCHING,
    "examples": ProgressStage.SEARCHING,
    "person": ProgressStage.SEARCHING,
    "image": ProgressStage.GENERATING_IMAGE,
    "direct": ProgressStage.GENERATING,
    "summary": ProgressStage.SUMMARIZING,
    "summarize": ProgressStage.SUMMARIZING,
}
_NON_TOOL_INTENTS = frozenset({"direct", "image", "summary", "summarize"})
_DEFAULT_ERROR_MESSAGE = "Unbekannter Fehler"

ThreadCallback = Callable[[str], None]


def _new_call_id() -> str:
    return f"tc_{uuid.uuid4().hex[:16]}"


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes)):
        return list(value)
    return []


class StreamReconstructor:
    """Folds decoded stream records into snapshots of the turn."""

    def __init__(
        self,
        *,
        thread_id: str | None = None,
        on_thread_created: ThreadCallback | None = None,
        call_id_factory: Callable[[], str] = _new_call_id,
    ) -> None:
        self._thread_id = thread_id
        self._on_thread_created = on_thread_created
        self._call_id_factory = call_id_factory
        self._progress = Progress()
        self._text = ""
        self._tool_calls: list[ToolCallRecord] = []
        self._fanout: list[ToolCallRecord] = []
        self._active: ToolCallRecord | None = None
        self._search_results: list[Any] = []
        self._citations: list[Mapping[str, Any]] = []
        self._image: Any = None
        self._stream_metadata: Mapping[str, Any] | None = None
        self._interrupt_pending = False
        self._indexed_document_ids: list[str] = []
        self._handlers: dict[str, Callable[[Mapping[str, Any]], bool]] = {
            "thread_created": self._on_thread,
            "intent": self._on_intent,
            "search_start": self._on_search_start,
            "search_complete": self._on_search_complete,
            "summary_start": self._on_summary_start,
            "summary_complete": self._on_summary_complete,
            "image_start": self._on_image_start,
            "image_complete": self._on_image_complete,
            "response_start": self._on_response_start,
            "thinking_step": self._on_thinking_step,
            "text_delta": self._on_text_delta,
            "interrupt": self._on_interrupt,
            "document_indexed": self._on_document_indexed,
            "done": self._on_done,
            "error": self._on_error,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    @property
    def progress(self) -> Progress:
        return self._progress

    @property
    def text(self) -> str:
        return self._text

    @property
    def thread_id(self) -> str | None:
        return self._thread_id

    @property
    def interrupt_pending(self) -> bool:
        return self._interrupt_pending

    @property
    def requires_action(self) -> bool:
        return self._progress.stage is ProgressStage.COMPLETE and self._interrupt_pending

    @property
    def indexed_document_ids(self) -> tuple[str, ...]:
        return tuple(self._indexed_document_ids)

    @property
    def citations(self) -> tuple[Mapping[str, Any], ...]:
        return tuple(self._citations)

    @property
    def stream_metadata(self) -> Mapping[str, Any] | None:
        return self._stream_metadata

    def apply(self, record: DecodedEvent) -> Snapshot | None:
        """Apply one decoded record; return a snapshot if content changed.

        Raises:
            StreamProtocolError: for an explicit ``error`` record.
        """

        handler = self._handlers.get(record.event)
        if handler is None:
            LOGGER.debug("Ignoring unknown stream event '%s'", record.event)
            return None
        if handler(_as_mapping(record.data)):
            return self.snapshot()
        return None

    def finish(self) -> Snapshot:
        """Return the final snapshot after the stream drained."""

        if self._interrupt_pending and self._progress.stage is not ProgressStage.COMPLETE:
            LOGGER.debug("Stream ended with a pending interrupt but without a done record")
        return self.snapshot()

    def snapshot(self) -> Snapshot:
        content: list[MessagePart] = [record.as_part() for record in self._tool_calls]
        active = self._active
        if active is not None and active not in self._tool_calls:
            content.append(active.as_part())

        group_id = active.call_id if active is not None else (self._tool_calls[0].call_id if self._tool_calls else None)
        for citation in self._citations:
            url = citation.get("url")
            if not url:
                continue
            content.append(
                SourcePart(
                    id=f"source-{citation.get('id')}",
                    url=str(url),
                    title=citation.get("title") or None,
                    parent_id=group_id,
                )
            )
        content.append(TextPart(self._text))

        metadata: dict[str, Any] = {}
        if self._search_results:
            metadata["searchResults"] = list(self._search_results)
        if self._citations:
            metadata["citations"] = [dict(item) for item in self._citations]
        if self._image is not None:
            metadata["generatedImage"] = self._image
        if self._stream_metadata is not None:
            metadata["streamMetadata"] = dict(self._stream_metadata)
        if self._thread_id:
            metadata["threadId"] = self._thread_id
        if self._indexed_document_ids:
            metadata["indexedDocumentIds"] = list(self._indexed_document_ids)

        return Snapshot(
            content=tuple(content),
            progress=self._progress,
            metadata=metadata,
            requires_action=self.requires_action,
        )

    # ------------------------------------------------------------------
    # Handlers; each returns True when the record affected content
    # ------------------------------------------------------------------
    def _on_thread(self, data: Mapping[str, Any]) -> bool:
        thread_id = data.get("threadId")
        if not thread_id:
            return False
        self._thread_id = str(thread_id)
        LOGGER.debug("Backend created thread %s", self._thread_id)
        if self._on_thread_created is not None:
            self._on_thread_created(self._thread_id)
        return False

    def _on_intent(self, data: Mapping[str, Any]) -> bool:
        intent = str(data.get("intent") or "")
        message = str(data.get("message") or "")
        self._progress = Progress(
            stage=INTENT_STAGES.get(intent, ProgressStage.SEARCHING),
            message=message,
            intent=intent or None,
            reasoning=data.get("reasoning"),
        )

        tool_name = tool_for_intent(intent)
        if tool_name is None:
            if intent not in _NON_TOOL_INTENTS:
                LOGGER.debug("No tool mapping for intent '%s'", intent)
            return True

        base_query = str(data.get("searchQuery") or message)
        queries = [str(item) for item in _as_list(data.get("subQueries")) if item] or [base_query]
        sources: list[str | None] = [str(item) for item in _as_list(data.get("searchSources")) if item] or [None]

        records: list[ToolCallRecord] = []
        for query in queries:
            for source in sources:
                args: dict[str, Any] = {"query": query}
                name = tool_name
                if source is not None:
                    args["source"] = source
                    name = tool_for_source(source, tool_name)
                records.append(ToolCallRecord(self._call_id_factory(), name, args))

        self._fanout = records
        self._tool_calls.extend(records)
        LOGGER.debug(
            "Intent '%s' opened %d tool call(s) (%d quer%s x %d source(s))",
            intent,
            len(records),
            len(queries),
            "y" if len(queries) == 1 else "ies",
            len(sources),
        )
        return True

    def _on_search_start(self, data: Mapping[str, Any]) -> bool:
        self._progress = self._progress.advance(ProgressStage.SEARCHING, str(data.get("message") or ""))
        return True

    def _on_search_complete(self, data: Mapping[str, Any]) -> bool:
        results = _as_list(data.get("results"))
        if results:
            self._search_results = results
        result_count = data.get("resultCount")
        self._progress = self._progress.advance(
            ProgressStage.GENERATING,
            str(data.get("message") or ""),
            result_count=result_count if isinstance(result_count, int) else len(results),
        )
        payload = {"results": results}
        attached = 0
        for record in self._fanout:
            if not record.is_resolved:
                record.attach_result(payload)
                attached += 1
        LOGGER.debug("search_complete resolved %d pending tool call(s)", attached)
        return True

    def _on_summary_start(self, data: Mapping[str, Any]) -> bool:
        self._progress = self._progress.advance(ProgressStage.SUMMARIZING, str(data.get("message") or ""))
        return True

    def _on_summary_complete(self, data: Mapping[str, Any]) -> bool:
        self._progress = self._progress.advance(ProgressStage.GENERATING, str(data.get("message") or ""))
        return True

    def _on_image_start(self, data: Mapping[str, Any]) -> bool:
        self._progress = self._progress.advance(ProgressStage.GENERATING_IMAGE, str(data.get("message") or ""))
        return True

    def _on_image_complete(self, data: Mapping[str, Any]) -> bool:
        image = data.get("image")
        if image:
            self._image = image
        error = data.get("error")
        if error:
            LOGGER.info("Image generation failed: %s", error)
        stage = ProgressStage.ERROR if error else ProgressStage.GENERATING
        self._progress = self._progress.advance(stage, str(data.get("message") or ""))
        return True

    def _on_response_start(self, data: Mapping[str, Any]) -> bool:
        self._progress = self._progress.advance(ProgressStage.GENERATING, str(data.get("message") or ""))
        return True

    def _on_thinking_step(self, data: Mapping[str, Any]) -> bool:
        step_id = str(data.get("stepId") or "")
        title = str(data.get("title") or "")
        status = data.get("status")

        if status == "in_progress":
            step_args = dict(_as_mapping(data.get("args")))
            args = {"query": step_args.get("query") or title, **step_args}
            previous = self._active
            if previous is not None and previous not in self._tool_calls:
                LOGGER.debug("Step %s superseded open step %s", step_id, previous.call_id)
                self._tool_calls.append(previous)
            self._active = ToolCallRecord(step_id or self._call_id_factory(), public_tool_name(str(data.get("toolName") or "")), args)
            self._progress = Progress(stage=ProgressStage.SEARCHING, message=title)
            return True

        if status == "completed":
            active = self._active
            if active is None or active.call_id != step_id:
                LOGGER.debug("Ignoring completion for step %s; it is not the active step", step_id)
                return False
            active.attach_result(data.get("result") or {})
            self._tool_calls.append(active)
            self._active = None
            self._progress = Progress(stage=ProgressStage.GENERATING, message=title)
            return True

        LOGGER.debug("Ignoring thinking_step %s with status %r", step_id, status)
        return False

    def _on_text_delta(self, data: Mapping[str, Any]) -> bool:
        text = data.get("text")
        if not isinstance(text, str) or not text:
            return False
        self._text += text
        return True

    def _on_interrupt(self, data: Mapping[str, Any]) -> bool:
        LOGGER.debug("Interrupt announced; deferring requires-action until the stream drains")
        self._interrupt_pending = True
        return False

    def _on_document_indexed(self, data: Mapping[str, Any]) -> bool:
        document_id = data.get("documentId")
        if document_id and str(document_id) not in self._indexed_document_ids:
            self._indexed_document_ids.append(str(document_id))
        return False

    def _on_done(self, data: Mapping[str, Any]) -> bool:
        citations = data.get("citations")
        if citations:
            self._citations = [item for item in _as_list(citations) if isinstance(item, Mapping)]
        image = data.get("generatedImage")
        if image:
            self._image = image
        metadata = data.get("metadata")
        if isinstance(metadata, Mapping):
            self._stream_metadata = metadata
        thread_id = data.get("threadId")
        if thread_id:
            self._thread_id = str(thread_id)
        if data.get("interrupted"):
            self._interrupt_pending = True
        self._progress = Progress(stage=ProgressStage.COMPLETE, message="")
        return False

    def _on_error(self, data: Mapping[str, Any]) -> bool:
        message = str(data.get("error") or data.get("message") or _DEFAULT_ERROR_MESSAGE)
        self._progress = self._progress.advance(ProgressStage.ERROR, message)
        raise StreamProtocolError(message)
