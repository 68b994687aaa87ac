"""Exception hierarchy for turn processing.

Transport and protocol failures propagate to the caller, which renders a
failure state. :class:`TurnCancelled` is the benign signal used for aborted
requests and for spurious re-invocations while a human-in-the-loop pause is
outstanding; callers should treat it as "nothing to show", never as an error.
"""

from __future__ import annotations

__all__ = [
    "ChatRelayError",
    "TransportError",
    "StreamProtocolError",
    "TurnCancelled",
    "ToolResultAlreadySet",
]


class ChatRelayError(Exception):
    """Base class for all errors raised by the engine."""


class TransportError(ChatRelayError):
    """The backend answered with a non-success status or the network failed."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StreamProtocolError(ChatRelayError):
    """The backend sent an explicit ``error`` record on the event stream."""


class TurnCancelled(ChatRelayError):
    """Processing stopped because the caller aborted or the turn must not run."""

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(reason)
        self.reason = reason


class ToolResultAlreadySet(ChatRelayError):
    """A result was attached to a tool call that already carries one."""

    def __init__(self, call_id: str) -> None:
        super().__init__(f"Tool call '{call_id}' already has a result")
        self.call_id = call_id
