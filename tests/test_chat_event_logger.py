"""Tests for the turn event logging helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from chatrelay.ai.orchestration.event_log import ChatEventLogger
from chatrelay.ai.orchestration.types import Progress, Snapshot
from chatrelay.chat.message_model import TextPart


def _read_entries(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line]


def _start(logger: ChatEventLogger):
    return logger.start_run(
        run_id="run-test",
        conversation_id="conv-1",
        endpoint="/api/chat-graph/stream",
        request={"agentId": "gruenerator-universal", "messages": []},
    )


def test_chat_event_logger_writes_entries(tmp_path: Path) -> None:
    logger = ChatEventLogger(enabled=True, base_dir=tmp_path)
    run = _start(logger)

    with run:
        run.log_record("text_delta", {"text": "Hallo"})
        run.log_snapshot(Snapshot(content=(TextPart("Hallo"),), progress=Progress()), label="final")
        run.log_completion(text="Hallo", tool_call_count=0, requires_action=False, thread_id="t-1")

    log_files = list(tmp_path.glob("*.jsonl"))
    assert len(log_files) == 1
    entries = _read_entries(log_files[0])
    assert [entry["entry"] for entry in entries] == ["start", "record", "snapshot", "completion"]
    assert entries[0]["request"]["agentId"] == "gruenerator-universal"
    assert (entries[1]["index"], entries[1]["name"], entries[1]["data"]) == (1, "text_delta", {"text": "Hallo"})
    assert entries[2]["snapshot"]["content"] == [{"type": "text", "text": "Hallo"}]
    assert entries[-1]["status"] == "success"
    assert entries[-1]["record_count"] == 1


def test_interrupted_completion_is_labelled(tmp_path: Path) -> None:
    run = _start(ChatEventLogger(enabled=True, base_dir=tmp_path))

    with run:
        run.log_completion(text="", tool_call_count=0, requires_action=True, thread_id=None)

    entries = _read_entries(run.path)
    assert entries[-1]["status"] == "interrupted"


def test_exception_inside_run_logs_failure(tmp_path: Path) -> None:
    run = _start(ChatEventLogger(enabled=True, base_dir=tmp_path))

    with pytest.raises(RuntimeError):
        with run:
            raise RuntimeError("boom")

    entries = _read_entries(run.path)
    assert entries[-1]["entry"] == "failure"
    assert entries[-1]["message"] == "boom"
    assert entries[-1]["details"] == {"type": "RuntimeError"}


def test_chat_event_logger_disabled_is_noop(tmp_path: Path) -> None:
    run = _start(ChatEventLogger(enabled=False, base_dir=tmp_path))

    with run:
        run.log_record("done", {})
        run.log_completion(text="", tool_call_count=0, requires_action=False, thread_id=None)

    assert list(tmp_path.glob("*.jsonl")) == []
    assert run.path is None
