"""Tests for the stream reconstruction state machine."""

from __future__ import annotations

import itertools
from typing import Any

import pytest

from chatrelay.ai.errors import StreamProtocolError, ToolResultAlreadySet
from chatrelay.ai.orchestration.event_decoder import DecodedEvent
from chatrelay.ai.orchestration.reconstruction import StreamReconstructor
from chatrelay.ai.orchestration.types import ProgressStage, Snapshot, ToolCallRecord
from chatrelay.chat.message_model import SourcePart, TextPart, ToolCallPart

from helpers import SCENARIO_B_RECORDS


def _counter_ids():
    counter = itertools.count(1)
    return lambda: f"tc_{next(counter)}"


def _machine(**kwargs: Any) -> StreamReconstructor:
    kwargs.setdefault("call_id_factory", _counter_ids())
    return StreamReconstructor(**kwargs)


def _apply_all(machine: StreamReconstructor, records) -> list[Snapshot]:
    snapshots = []
    for event, data in records:
        snapshot = machine.apply(DecodedEvent(event, data))
        if snapshot is not None:
            snapshots.append(snapshot)
    return snapshots


def test_search_turn_produces_one_tool_call_three_sources_and_text() -> None:
    machine = _machine()

    snapshots = _apply_all(machine, SCENARIO_B_RECORDS)
    final = machine.finish()

    assert len(snapshots) == 6
    assert final.text == "Klimaschutz ist wichtig."
    assert len(final.tool_calls) == 1
    call = final.tool_calls[0]
    assert call.tool_name == "gruenerator_search"
    assert call.args == {"query": "Klimaschutz"}
    assert call.has_result
    assert len(call.result["results"]) == 3
    assert [source.id for source in final.sources] == ["source-1", "source-2", "source-3"]
    assert {source.parent_id for source in final.sources} == {call.call_id}
    assert final.progress.stage is ProgressStage.COMPLETE
    assert final.metadata["threadId"] == "thread-1"
    assert final.metadata["streamMetadata"]["citationsExtracted"] == 3
    assert not final.requires_action


def test_content_order_is_tool_calls_then_sources_then_text() -> None:
    machine = _machine()
    _apply_all(machine, SCENARIO_B_RECORDS)

    kinds = [type(part) for part in machine.finish().content]

    assert kinds == [ToolCallPart, SourcePart, SourcePart, SourcePart, TextPart]


def test_multi_source_intent_fans_out_and_shares_one_result() -> None:
    machine = _machine()
    machine.apply(
        DecodedEvent(
            "intent",
            {
                "intent": "research",
                "message": "Recherchiere",
                "subQueries": ["Radwege Münster", "Radwege Köln"],
                "searchSources": ["documents", "web"],
            },
        )
    )

    pending = machine.snapshot().tool_calls
    assert len(pending) == 4
    assert not any(call.has_result for call in pending)
    assert [call.tool_name for call in pending] == ["gruenerator_search", "web_search"] * 2
    assert [call.args["query"] for call in pending] == ["Radwege Münster"] * 2 + ["Radwege Köln"] * 2

    machine.apply(DecodedEvent("search_complete", {"message": "fertig", "resultCount": 1, "results": [{"url": "u"}]}))

    resolved = machine.snapshot().tool_calls
    assert all(call.result == {"results": [{"url": "u"}]} for call in resolved)
    assert len({id(call.result) for call in resolved}) == 1
    assert machine.progress.stage is ProgressStage.GENERATING
    assert machine.progress.result_count == 1


def test_interrupt_only_requires_action_after_completion() -> None:
    machine = _machine()
    machine.apply(DecodedEvent("text_delta", {"text": "Welche Stadt meinst du?"}))

    assert machine.apply(DecodedEvent("interrupt", {})) is None
    assert machine.interrupt_pending
    assert not machine.snapshot().requires_action

    assert machine.apply(DecodedEvent("done", {"threadId": "t-7"})) is None
    final = machine.finish()

    assert final.requires_action
    assert final.to_dict()["status"] == {"type": "requires-action", "reason": "interrupt"}


def test_done_marked_interrupted_sets_requires_action() -> None:
    machine = _machine()
    machine.apply(DecodedEvent("done", {"interrupted": True}))

    assert machine.finish().requires_action


def test_thinking_step_opens_and_finalises_active_call() -> None:
    machine = _machine()

    opened = machine.apply(
        DecodedEvent(
            "thinking_step",
            {"stepId": "step-1", "toolName": "search_documents", "title": "Suche Anträge", "status": "in_progress"},
        )
    )
    assert opened is not None
    assert opened.tool_calls == (ToolCallPart("step-1", "gruenerator_search", {"query": "Suche Anträge"}),)
    assert opened.progress.stage is ProgressStage.SEARCHING

    mismatched = machine.apply(
        DecodedEvent("thinking_step", {"stepId": "other", "status": "completed", "result": {"x": 1}})
    )
    assert mismatched is None
    assert not machine.snapshot().tool_calls[0].has_result

    completed = machine.apply(
        DecodedEvent(
            "thinking_step",
            {"stepId": "step-1", "title": "Fertig", "status": "completed", "result": {"hits": 2}},
        )
    )
    assert completed.tool_calls[0].result == {"hits": 2}
    assert completed.progress.stage is ProgressStage.GENERATING
    assert len(completed.tool_calls) == 1


def test_thinking_step_keeps_explicit_query_argument() -> None:
    machine = _machine()

    snapshot = machine.apply(
        DecodedEvent(
            "thinking_step",
            {
                "stepId": "s",
                "toolName": "web_search",
                "title": "Websuche",
                "status": "in_progress",
                "args": {"query": "Tempo 30", "limit": 5},
            },
        )
    )

    assert snapshot.tool_calls[0].args == {"query": "Tempo 30", "limit": 5}


def test_sources_group_under_active_call_when_open() -> None:
    machine = _machine()
    machine.apply(DecodedEvent("intent", {"intent": "web", "message": "Websuche"}))
    machine.apply(DecodedEvent("thinking_step", {"stepId": "step-9", "toolName": "scrape_url", "status": "in_progress"}))
    machine.apply(
        DecodedEvent(
            "done",
            {"citations": [{"id": 4, "title": "", "url": "https://x.example"}, {"id": 5, "title": "ohne url"}]},
        )
    )

    sources = machine.finish().sources

    assert len(sources) == 1
    assert sources[0].parent_id == "step-9"
    assert sources[0].title is None


def test_done_without_citations_yields_no_sources() -> None:
    machine = _machine()
    machine.apply(DecodedEvent("intent", {"intent": "search", "message": "m"}))
    machine.apply(
        DecodedEvent(
            "search_complete",
            {
                "message": "m",
                "resultCount": 2,
                "results": [{"title": "A", "url": "https://a"}, {"title": "B", "url": "https://b"}],
            },
        )
    )
    machine.apply(DecodedEvent("text_delta", {"text": "Antwort"}))
    machine.apply(DecodedEvent("done", {}))

    final = machine.finish()

    assert final.sources == ()
    assert "citations" not in final.metadata
    assert machine.citations == ()


def test_intent_stages() -> None:
    expectations = {
        "direct": ProgressStage.GENERATING,
        "image": ProgressStage.GENERATING_IMAGE,
        "summary": ProgressStage.SUMMARIZING,
        "person": ProgressStage.SEARCHING,
        "mystery": ProgressStage.SEARCHING,
    }
    for intent, stage in expectations.items():
        machine = _machine()
        snapshot = machine.apply(DecodedEvent("intent", {"intent": intent, "message": "m", "reasoning": "r"}))
        assert snapshot.progress.stage is stage, intent
        assert snapshot.progress.reasoning == "r"

    direct = _machine()
    direct.apply(DecodedEvent("intent", {"intent": "direct", "message": "m"}))
    assert direct.snapshot().tool_calls == ()


def test_image_failure_sets_error_stage() -> None:
    machine = _machine()
    machine.apply(DecodedEvent("image_start", {"message": "Erstelle Bild"}))
    assert machine.progress.stage is ProgressStage.GENERATING_IMAGE

    snapshot = machine.apply(DecodedEvent("image_complete", {"message": "Fehler", "error": "quota"}))

    assert snapshot.progress.stage is ProgressStage.ERROR


def test_generated_image_lands_in_metadata() -> None:
    machine = _machine()
    image = {"url": "https://img.example/1.png", "alt": "Sonnenblume"}

    snapshot = machine.apply(DecodedEvent("image_complete", {"message": "ok", "image": image}))

    assert snapshot.metadata["generatedImage"] == image
    assert snapshot.progress.stage is ProgressStage.GENERATING


def test_error_record_raises_but_keeps_streamed_text() -> None:
    machine = _machine()
    machine.apply(DecodedEvent("text_delta", {"text": "Bisher"}))

    with pytest.raises(StreamProtocolError, match="Backend kaputt"):
        machine.apply(DecodedEvent("error", {"error": "Backend kaputt"}))

    assert machine.text == "Bisher"
    assert machine.progress.stage is ProgressStage.ERROR


def test_side_channel_records_do_not_emit_snapshots() -> None:
    created: list[str] = []
    machine = _machine(on_thread_created=created.append)

    assert machine.apply(DecodedEvent("thread_created", {"threadId": "t-1"})) is None
    assert machine.apply(DecodedEvent("document_indexed", {"documentId": "d-1"})) is None
    assert machine.apply(DecodedEvent("document_indexed", {"documentId": "d-1"})) is None
    assert machine.apply(DecodedEvent("unknown_event", {"x": 1})) is None

    assert created == ["t-1"]
    assert machine.thread_id == "t-1"
    assert machine.indexed_document_ids == ("d-1",)


def test_text_only_grows() -> None:
    machine = _machine()
    seen: list[str] = []
    for piece in ["Die ", "", "Grünen ", "sagen"]:
        snapshot = machine.apply(DecodedEvent("text_delta", {"text": piece}))
        if snapshot is not None:
            seen.append(snapshot.text)

    assert seen == ["Die ", "Die Grünen ", "Die Grünen sagen"]
    assert all(later.startswith(earlier) for earlier, later in zip(seen, seen[1:]))


def test_tool_results_are_write_once() -> None:
    record = ToolCallRecord("tc_1", "web_search", {"query": "x"})
    record.attach_result({"results": []})

    with pytest.raises(ToolResultAlreadySet):
        record.attach_result({"results": [1]})
    assert record.result == {"results": []}
