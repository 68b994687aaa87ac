"""HTTP transport for the streaming agent endpoints."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Awaitable, Callable, Mapping, Protocol, TypeVar

import httpx

from ..services.settings import Settings
from .errors import TransportError, TurnCancelled

__all__ = ["AbortSignal", "Transport", "HttpTransport"]

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class AbortSignal:
    """Cooperative cancellation flag shared between a caller and a running turn.

    Setting the signal interrupts the pending network read; the read then
    raises :class:`~chatrelay.ai.errors.TurnCancelled`.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def abort(self, reason: str = "aborted") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_aborted(self) -> None:
        if self._event.is_set():
            raise TurnCancelled(self._reason or "aborted")


class Transport(Protocol):
    """Authenticated streaming POST used by the turn orchestrator."""

    def stream(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        abort: AbortSignal | None = None,
    ) -> AsyncContextManager[AsyncIterator[bytes]]:
        ...


async def _race(factory: Callable[[], Awaitable[T]], abort: AbortSignal | None) -> T:
    """Await the result of ``factory()`` unless ``abort`` fires first.

    The awaitable is only created once the signal has been checked, so an
    already-aborted signal never starts the work.
    """

    if abort is None:
        return await factory()
    abort.raise_if_aborted()
    work = asyncio.ensure_future(factory())
    waiter = asyncio.ensure_future(abort.wait())
    try:
        await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()
        if not work.done():
            work.cancel()
            with contextlib.suppress(asyncio.CancelledError, httpx.HTTPError):
                await work
    if work.cancelled():
        raise TurnCancelled(abort.reason or "aborted")
    return work.result()


async def _next_chunk(iterator: AsyncIterator[bytes]) -> bytes | None:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, Mapping) and body.get("error"):
        return str(body["error"])
    return f"HTTP error {response.status_code}"


class HttpTransport:
    """Streams POST responses from the backend using ``httpx.AsyncClient``.

    The turn stream is never retried: a failure surfaces to the caller as
    :class:`~chatrelay.ai.errors.TransportError`.
    """

    def __init__(self, settings: Settings, *, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = client or self._build_client(settings)
        self._owns_client = client is None

    @property
    def settings(self) -> Settings:
        return self._settings

    @asynccontextmanager
    async def stream(
        self,
        path: str,
        payload: Mapping[str, Any],
        *,
        abort: AbortSignal | None = None,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        request = self._client.build_request("POST", path, json=dict(payload))
        LOGGER.debug("POST %s (%d top-level key(s))", path, len(payload))
        try:
            response = await _race(lambda: self._client.send(request, stream=True), abort)
        except httpx.HTTPError as exc:
            raise TransportError(f"Request to {path} failed: {exc}") from exc

        try:
            if response.is_error:
                await response.aread()
                message = _error_message(response)
                LOGGER.debug("POST %s failed with HTTP %s: %s", path, response.status_code, message)
                raise TransportError(message, status_code=response.status_code)
            yield self._iter_chunks(response, abort)
        finally:
            await response.aclose()

    async def _iter_chunks(self, response: httpx.Response, abort: AbortSignal | None) -> AsyncIterator[bytes]:
        iterator = response.aiter_bytes().__aiter__()
        while True:
            try:
                chunk = await _race(lambda: _next_chunk(iterator), abort)
            except httpx.HTTPError as exc:
                raise TransportError(f"Stream interrupted: {exc}") from exc
            if chunk is None:
                return
            if chunk:
                yield chunk

    @staticmethod
    def _build_client(settings: Settings) -> httpx.AsyncClient:
        headers = dict(settings.default_headers)
        if settings.api_token:
            headers["Authorization"] = f"Bearer {settings.api_token}"
        return httpx.AsyncClient(base_url=settings.base_url, timeout=settings.request_timeout, headers=headers)

    async def aclose(self) -> None:
        """Close the underlying HTTP client when this transport created it."""

        if self._owns_client:
            await self._client.aclose()
