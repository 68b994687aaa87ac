"""Human-in-the-loop pause/resume bookkeeping for one chat session."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ...chat.message_model import HUMAN_QUESTION_TOOL, ChatMessage
from ..errors import TurnCancelled

if TYPE_CHECKING:
    from .types import Snapshot

__all__ = ["InterruptController", "TurnDecision", "TurnMode"]

LOGGER = logging.getLogger(__name__)


class TurnMode(str, Enum):
    FRESH = "fresh"
    RESUME = "resume"


@dataclass(slots=True, frozen=True)
class TurnDecision:
    """Outcome of :meth:`InterruptController.decide`."""

    mode: TurnMode
    answer: str | None = None

    @property
    def is_resume(self) -> bool:
        return self.mode is TurnMode.RESUME


_FRESH = TurnDecision(TurnMode.FRESH)


@dataclass(slots=True)
class _PendingInterrupt:
    conversation_id: str
    snapshot: Snapshot | None


class InterruptController:
    """Tracks which conversation is paused on a human-in-the-loop question.

    The state outlives individual turns but belongs to one chat session, so
    the controller is constructed by the session host and disposed with
    :meth:`close` (or by leaving its ``with`` block). At most one interrupt is
    pending at a time: a turn for another conversation clears a stale marker.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: dict[str, _PendingInterrupt] = {}
        self._closed = False

    def __enter__(self) -> "InterruptController":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        with self._lock:
            self._pending.clear()
            self._closed = True

    def decide(self, conversation_id: str, current_message: ChatMessage | None = None) -> TurnDecision:
        """Choose between a fresh turn and resuming a paused one.

        Raises:
            TurnCancelled: when the current message still waits for an answer
                or the same conversation is paused without one.
        """

        self._ensure_open()
        question = self._human_question(current_message)
        with self._lock:
            if question is not None:
                answer = question.answer
                if answer:
                    self._pending.clear()
                    LOGGER.info("Resuming conversation %s with the user's answer", conversation_id)
                    return TurnDecision(TurnMode.RESUME, answer)
                LOGGER.info("Conversation %s still waits for an answer; skipping turn", conversation_id)
                raise TurnCancelled("awaiting-answer")

            if conversation_id in self._pending:
                LOGGER.info("Conversation %s is paused on an interrupt; skipping turn", conversation_id)
                raise TurnCancelled("interrupt-pending")

            if self._pending:
                stale = ", ".join(sorted(self._pending))
                LOGGER.info("Clearing stale interrupt marker for %s", stale)
                self._pending.clear()
        return _FRESH

    def record_outcome(self, conversation_id: str, snapshot: Snapshot) -> None:
        """Remember or clear the pause marker after a turn drained."""

        self._ensure_open()
        with self._lock:
            if snapshot.requires_action:
                self._pending.clear()
                self._pending[conversation_id] = _PendingInterrupt(conversation_id, snapshot)
                LOGGER.debug("Conversation %s paused on an interrupt", conversation_id)
            else:
                self._pending.pop(conversation_id, None)

    def is_pending(self, conversation_id: str | None = None) -> bool:
        with self._lock:
            if conversation_id is None:
                return bool(self._pending)
            return conversation_id in self._pending

    def last_snapshot(self, conversation_id: str) -> Snapshot | None:
        """Return the snapshot that ended in the pending interrupt, if any."""

        with self._lock:
            entry = self._pending.get(conversation_id)
            return entry.snapshot if entry is not None else None

    def _ensure_open(self) -> None:
        if self._closed:
            raise RuntimeError("InterruptController has been closed")

    @staticmethod
    def _human_question(message: ChatMessage | None) -> Any:
        if message is None:
            return None
        calls = message.tool_calls(HUMAN_QUESTION_TOOL)
        return calls[-1] if calls else None
