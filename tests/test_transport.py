"""HTTP-level tests for the streaming transport."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from chatrelay.ai.errors import TransportError, TurnCancelled
from chatrelay.ai.transport import AbortSignal, HttpTransport
from chatrelay.services.settings import Settings

from helpers import encode_stream


def _transport(settings: Settings, handler) -> HttpTransport:
    client = httpx.AsyncClient(base_url=settings.base_url, transport=httpx.MockTransport(handler))
    return HttpTransport(settings, client=client)


@pytest.mark.asyncio
async def test_stream_yields_response_body(settings: Settings) -> None:
    body = encode_stream(("text_delta", {"text": "Hallo"}), ("done", {}))
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, content=body)

    transport = _transport(settings, handler)
    async with transport.stream("/api/chat-graph/stream", {"agentId": "a"}) as chunks:
        received = b"".join([chunk async for chunk in chunks])

    assert received == body
    assert seen[0].method == "POST"
    assert seen[0].url.path == "/api/chat-graph/stream"
    assert json.loads(seen[0].content) == {"agentId": "a"}


@pytest.mark.asyncio
async def test_error_status_uses_body_error_field(settings: Settings) -> None:
    transport = _transport(settings, lambda request: httpx.Response(500, json={"error": "Agent nicht gefunden"}))

    with pytest.raises(TransportError) as excinfo:
        async with transport.stream("/x", {}):
            pass

    assert str(excinfo.value) == "Agent nicht gefunden"
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_error_status_without_json_body(settings: Settings) -> None:
    transport = _transport(settings, lambda request: httpx.Response(502, text="<html>bad gateway</html>"))

    with pytest.raises(TransportError, match="HTTP error 502"):
        async with transport.stream("/x", {}):
            pass


@pytest.mark.asyncio
async def test_network_failure_becomes_transport_error(settings: Settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport = _transport(settings, handler)

    with pytest.raises(TransportError, match="connection refused"):
        async with transport.stream("/x", {}):
            pass


@pytest.mark.asyncio
async def test_already_aborted_signal_skips_request(settings: Settings) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, content=b"")

    transport = _transport(settings, handler)
    abort = AbortSignal()
    abort.abort()

    with pytest.raises(TurnCancelled):
        async with transport.stream("/x", {}, abort=abort):
            pass
    assert calls == []


@pytest.mark.asyncio
async def test_already_aborted_signal_never_calls_send(settings: Settings, monkeypatch: pytest.MonkeyPatch) -> None:
    client = httpx.AsyncClient(base_url=settings.base_url, transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    send_calls: list[httpx.Request] = []
    original_send = client.send

    def _recording_send(request: httpx.Request, **kwargs):
        send_calls.append(request)
        return original_send(request, **kwargs)

    monkeypatch.setattr(client, "send", _recording_send)
    transport = HttpTransport(settings, client=client)
    abort = AbortSignal()
    abort.abort("stopped")

    with pytest.raises(TurnCancelled) as excinfo:
        async with transport.stream("/x", {}, abort=abort):
            pass

    assert excinfo.value.reason == "stopped"
    assert send_calls == []
    await client.aclose()


@pytest.mark.asyncio
async def test_abort_interrupts_pending_read(settings: Settings) -> None:
    never = asyncio.Event()

    async def body():
        yield b'event: text_delta\ndata: {"text": "a"}\n'
        await never.wait()
        yield b"unreachable"

    transport = _transport(settings, lambda request: httpx.Response(200, content=body()))
    abort = AbortSignal()
    received: list[bytes] = []

    with pytest.raises(TurnCancelled):
        async with transport.stream("/x", {}, abort=abort) as chunks:
            async for chunk in chunks:
                received.append(chunk)
                asyncio.get_running_loop().call_soon(abort.abort)

    assert received == [b'event: text_delta\ndata: {"text": "a"}\n']
    assert abort.aborted


def test_default_client_sends_bearer_token(settings: Settings) -> None:
    client = HttpTransport._build_client(settings)
    try:
        assert client.headers["Authorization"] == "Bearer secret-token"
        assert str(client.base_url).startswith("http://backend.test")
    finally:
        asyncio.run(client.aclose())
