"""Turn orchestration: one backend round-trip per user turn."""

from __future__ import annotations

import inspect
import logging
import uuid
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Mapping, Sequence

from ...chat.mentionables import MentionableRegistry
from ...chat.mentions import ParsedMentions, parse_mentions
from ...chat.message_model import ChatMessage
from ...services.document_refs import DocumentReferenceStore, InMemoryDocumentReferenceStore
from ...services.settings import Settings
from ..errors import ChatRelayError, TurnCancelled
from ..transport import AbortSignal, Transport
from .event_decoder import EventDecoder
from .event_log import ChatEventLogger
from .interrupts import InterruptController, TurnDecision
from .reconstruction import StreamReconstructor
from .request_builder import (
    apply_clean_text,
    build_chat_request,
    build_resume_request,
    latest_user_index,
    merge_attachments,
    serialize_messages,
)
from .types import Snapshot, TurnCompletion

__all__ = ["TurnConfig", "TurnOrchestrator"]

LOGGER = logging.getLogger(__name__)

ThreadCallback = Callable[[str], Awaitable[None] | None]
CompletionCallback = Callable[[TurnCompletion], Awaitable[None] | None]


@dataclass(slots=True)
class TurnConfig:
    """Per-turn routing options supplied by the host.

    ``None`` values fall back to the corresponding :class:`Settings` field.
    """

    conversation_id: str
    thread_id: str | None = None
    agent_id: str | None = None
    model_id: str | None = None
    enabled_tools: Mapping[str, bool] | None = None
    use_deep_agent: bool = False


@dataclass(slots=True)
class _PreparedRequest:
    path: str
    payload: Dict[str, Any]
    mentions: ParsedMentions | None = None


class TurnOrchestrator:
    """Runs a chat turn against the backend and yields snapshots.

    The orchestrator owns no session state itself: the interrupt controller
    and document reference store are injected so their lifetime matches the
    hosting chat session.
    """

    def __init__(
        self,
        settings: Settings,
        transport: Transport,
        *,
        registry: MentionableRegistry | None = None,
        interrupts: InterruptController | None = None,
        document_refs: DocumentReferenceStore | None = None,
        event_logger: ChatEventLogger | None = None,
        on_thread_created: ThreadCallback | None = None,
        on_complete: CompletionCallback | None = None,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._registry = registry or MentionableRegistry()
        self._interrupts = interrupts or InterruptController()
        self._document_refs = document_refs or InMemoryDocumentReferenceStore()
        self._event_logger = event_logger or ChatEventLogger(enabled=settings.debug_event_logging)
        self._on_thread_created = on_thread_created
        self._on_complete = on_complete

    @property
    def registry(self) -> MentionableRegistry:
        return self._registry

    @property
    def interrupts(self) -> InterruptController:
        return self._interrupts

    @property
    def document_refs(self) -> DocumentReferenceStore:
        return self._document_refs

    async def run(
        self,
        messages: Sequence[ChatMessage],
        *,
        config: TurnConfig,
        current_message: ChatMessage | None = None,
        abort: AbortSignal | None = None,
    ) -> AsyncIterator[Snapshot]:
        """Stream one turn, yielding a snapshot after every content change.

        The last snapshot yielded is the final one. Raises
        :class:`~chatrelay.ai.errors.TurnCancelled` without sending a request
        when the conversation is paused on an unanswered question.
        """

        if current_message is None and messages:
            current_message = messages[-1]
        decision = self._interrupts.decide(config.conversation_id, current_message)
        request = self._prepare(messages, config, decision)

        run_id = uuid.uuid4().hex
        reconstructor = StreamReconstructor(thread_id=config.thread_id)
        decoder = EventDecoder()
        LOGGER.debug(
            "Turn %s started (conversation=%s, mode=%s, endpoint=%s)",
            run_id[:8],
            config.conversation_id,
            decision.mode.value,
            request.path,
        )

        with self._event_logger.start_run(
            run_id=run_id,
            conversation_id=config.conversation_id,
            endpoint=request.path,
            request=request.payload,
        ) as log_run:
            try:
                async with self._transport.stream(request.path, request.payload, abort=abort) as chunks:
                    async for chunk in chunks:
                        for record in decoder.feed(chunk):
                            log_run.log_record(record.event, record.data)
                            known_thread = reconstructor.thread_id
                            snapshot = reconstructor.apply(record)
                            if reconstructor.thread_id and reconstructor.thread_id != known_thread:
                                await _invoke(self._on_thread_created, reconstructor.thread_id)
                            if snapshot is not None:
                                yield snapshot
                    decoder.close()
            except TurnCancelled as exc:
                LOGGER.info("Turn %s cancelled: %s", run_id[:8], exc.reason)
                raise
            except ChatRelayError as exc:
                LOGGER.warning("Turn %s failed: %s", run_id[:8], exc)
                raise

            if decoder.dropped_frames:
                LOGGER.debug("Turn %s dropped %d malformed frame(s)", run_id[:8], decoder.dropped_frames)

            final = reconstructor.finish()
            log_run.log_snapshot(final, label="final")
            self._interrupts.record_outcome(config.conversation_id, final)
            indexed = reconstructor.indexed_document_ids
            if indexed:
                self._document_refs.add(config.conversation_id, indexed)
            log_run.log_completion(
                text=final.text,
                tool_call_count=len(final.tool_calls),
                requires_action=final.requires_action,
                thread_id=reconstructor.thread_id,
            )

            if final.requires_action:
                LOGGER.info("Turn %s paused for a human answer", run_id[:8])
            else:
                await _invoke(
                    self._on_complete,
                    TurnCompletion(
                        thread_id=reconstructor.thread_id,
                        stream_metadata=reconstructor.stream_metadata,
                        citations=reconstructor.citations,
                        indexed_document_ids=indexed,
                        snapshot=final,
                    ),
                )
            yield final

    def _prepare(self, messages: Sequence[ChatMessage], config: TurnConfig, decision: TurnDecision) -> _PreparedRequest:
        endpoints = self._settings.endpoints
        if decision.is_resume:
            if not config.thread_id:
                LOGGER.warning("Resuming conversation %s without a thread id", config.conversation_id)
            return _PreparedRequest(endpoints.resume, build_resume_request(config.thread_id, decision.answer or ""))

        formatted = serialize_messages(messages)
        attachments = merge_attachments(formatted, messages)
        default_agent = config.agent_id or self._settings.default_agent_id
        mentions: ParsedMentions | None = None
        index = latest_user_index(formatted)
        if index is not None:
            mentions = parse_mentions(messages[index].text, self._registry, default_agent_id=default_agent)
            apply_clean_text(formatted, mentions.clean_text)

        scope = self._document_refs.get(config.conversation_id)
        path = endpoints.deep_stream if config.use_deep_agent else endpoints.chat_stream
        payload = build_chat_request(
            formatted,
            agent_id=mentions.agent_id if mentions is not None else default_agent,
            thread_id=config.thread_id,
            enabled_tools=config.enabled_tools if config.enabled_tools is not None else self._settings.enabled_tools,
            model_id=config.model_id or self._settings.model_id,
            mentions=mentions,
            attachments=attachments,
            document_chat_ids=scope.document_ids,
            document_chat_mode=scope.mode,
            default_notebook_id=self._settings.default_notebook_id,
        )
        return _PreparedRequest(path, payload, mentions)


async def _invoke(callback: Callable[[Any], Awaitable[None] | None] | None, argument: Any) -> None:
    if callback is None:
        return
    result = callback(argument)
    if inspect.isawaitable(result):
        await result
