"""Streaming turn engine: transport, errors and orchestration."""

from .errors import ChatRelayError, StreamProtocolError, ToolResultAlreadySet, TransportError, TurnCancelled
from .transport import AbortSignal, HttpTransport, Transport

__all__ = [
    "AbortSignal",
    "ChatRelayError",
    "HttpTransport",
    "StreamProtocolError",
    "ToolResultAlreadySet",
    "Transport",
    "TransportError",
    "TurnCancelled",
]
