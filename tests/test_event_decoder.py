"""Tests for the incremental event decoder."""

from __future__ import annotations

from chatrelay.ai.orchestration.event_decoder import DecodedEvent, EventDecoder

from helpers import chunked, encode_stream


def test_malformed_payload_is_dropped_and_next_record_survives() -> None:
    decoder = EventDecoder()

    first = decoder.feed(b"event: text_delta\ndata: {not json\n")
    second = decoder.feed(b'event: text_delta\ndata: {"text": "ok"}\n')

    assert first == []
    assert second == [DecodedEvent("text_delta", {"text": "ok"})]
    assert decoder.dropped_frames == 1


def test_records_survive_arbitrary_chunk_boundaries() -> None:
    payload = encode_stream(
        ("intent", {"intent": "direct", "message": "Antworte"}),
        ("text_delta", {"text": "Grüße aus Köln"}),
        ("done", {}),
    )

    for size in (1, 2, 3, 7, 64):
        decoder = EventDecoder()
        records = [record for chunk in chunked(payload, size) for record in decoder.feed(chunk)]
        assert [record.event for record in records] == ["intent", "text_delta", "done"]
        assert records[1].data == {"text": "Grüße aus Köln"}


def test_blank_lines_and_crlf_are_tolerated() -> None:
    decoder = EventDecoder()

    records = decoder.feed(b'event: interrupt\r\ndata: {}\r\n\r\n\nevent: done\ndata: {"threadId": "t"}\n')

    assert records == [DecodedEvent("interrupt", {}), DecodedEvent("done", {"threadId": "t"})]


def test_payload_without_event_name_is_ignored() -> None:
    decoder = EventDecoder()

    assert decoder.feed(b'data: {"text": "lost"}\n') == []
    assert decoder.feed(b": keep-alive comment\n") == []


def test_unterminated_trailing_line_is_discarded_on_close() -> None:
    decoder = EventDecoder()

    records = decoder.feed(b'event: text_delta\ndata: {"text": "a"}\nevent: text_delta\ndata: {"text": "b"}')

    assert [record.data for record in records] == [{"text": "a"}]
    assert decoder.pending_event == "text_delta"
    assert decoder.close() == []
    assert decoder.pending_event == ""


def test_str_chunks_are_accepted() -> None:
    decoder = EventDecoder()

    assert decoder.feed('event: document_indexed\ndata: {"documentId": "d1"}\n') == [
        DecodedEvent("document_indexed", {"documentId": "d1"})
    ]
