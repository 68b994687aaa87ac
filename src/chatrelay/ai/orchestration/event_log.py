"""JSONL debug logs of individual turns."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Any, Mapping

from ...utils import logging as logging_utils

LOGGER = logging.getLogger(__name__)

_MAX_DEPTH = 8


def _default_event_dir() -> Path:
    log_path = logging_utils.get_log_path()
    if log_path is not None:
        return log_path.parent / "turns"
    return Path.home() / ".chatrelay" / "logs" / "turns"


def _jsonable(value: Any, depth: int = 0) -> Any:
    if depth > _MAX_DEPTH:
        return repr(value)
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "to_dict"):
        return _jsonable(value.to_dict(), depth + 1)
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item, depth + 1) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item, depth + 1) for item in value]
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return repr(value)


@dataclass(slots=True)
class _NullTurnLogRun:
    """Stand-in used while event logging is disabled."""

    path: Path | None = None

    def __enter__(self) -> "_NullTurnLogRun":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        return False

    def log_record(self, *_: Any, **__: Any) -> None:
        return

    def log_snapshot(self, *_: Any, **__: Any) -> None:
        return

    def log_completion(self, *_: Any, **__: Any) -> None:
        return

    def log_failure(self, *_: Any, **__: Any) -> None:
        return


class TurnLogRun:
    """Writes one JSON object per line for every step of a turn.

    Leaving the ``with`` block without :meth:`log_completion` records a
    failure entry, so aborted turns are visible in the log too.
    """

    def __init__(self, path: Path, *, context: Mapping[str, Any]) -> None:
        self.path = path
        self._file: IO[str] = path.open("w", encoding="utf-8")
        self._finalized = False
        self._records = 0
        self._write("start", context)

    def __enter__(self) -> "TurnLogRun":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if not self._finalized:
            if exc is not None:
                self.log_failure(message=str(exc) or exc_type.__name__, details={"type": exc_type.__name__})
            else:
                self.log_failure(message="turn ended without completion")
        return False

    @property
    def record_count(self) -> int:
        return self._records

    def log_record(self, event: str, data: Any) -> None:
        self._records += 1
        self._write("record", {"index": self._records, "name": event, "data": data})

    def log_snapshot(self, snapshot: Any, *, label: str = "snapshot") -> None:
        self._write("snapshot", {"label": label, "snapshot": snapshot})

    def log_completion(self, *, text: str, tool_call_count: int, requires_action: bool, thread_id: str | None) -> None:
        if self._finalized:
            return
        self._write(
            "completion",
            {
                "status": "interrupted" if requires_action else "success",
                "text": text,
                "tool_call_count": tool_call_count,
                "record_count": self._records,
                "thread_id": thread_id,
            },
        )
        self._finish()

    def log_failure(self, *, message: str, details: Mapping[str, Any] | None = None) -> None:
        if self._finalized:
            return
        payload: dict[str, Any] = {"status": "failure", "message": message}
        if details:
            payload["details"] = details
        self._write("failure", payload)
        self._finish()

    def _finish(self) -> None:
        self._finalized = True
        try:
            self._file.close()
        except OSError:
            LOGGER.debug("Failed to close turn log %s", self.path, exc_info=True)

    def _write(self, entry_type: str, payload: Mapping[str, Any]) -> None:
        entry = {"entry": entry_type, "timestamp": time.time(), **_jsonable(payload)}
        self._file.write(json.dumps(entry, ensure_ascii=False))
        self._file.write("\n")
        self._file.flush()


class ChatEventLogger:
    """Hands out per-turn JSONL logs when debug event logging is enabled."""

    def __init__(self, *, enabled: bool, base_dir: Path | str | None = None) -> None:
        self.enabled = bool(enabled)
        self._base_dir = Path(base_dir) if base_dir else _default_event_dir()

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def start_run(
        self,
        *,
        run_id: str,
        conversation_id: str,
        endpoint: str,
        request: Mapping[str, Any],
    ) -> TurnLogRun | _NullTurnLogRun:
        if not self.enabled:
            return _NullTurnLogRun()
        try:
            self._base_dir.mkdir(parents=True, exist_ok=True)
            path = self._allocate_path(run_id)
            run = TurnLogRun(
                path,
                context={
                    "run_id": run_id,
                    "conversation_id": conversation_id,
                    "endpoint": endpoint,
                    "request": request,
                },
            )
        except OSError:
            LOGGER.warning("Could not open turn event log in %s", self._base_dir, exc_info=True)
            return _NullTurnLogRun()
        LOGGER.debug("Turn event log started: %s", path)
        return run

    def _allocate_path(self, run_id: str) -> Path:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        safe_id = "".join(ch for ch in run_id if ch.isalnum())[:12] or "turn"
        return self._base_dir / f"turn-{stamp}-{safe_id}.jsonl"


__all__ = ["ChatEventLogger", "TurnLogRun"]
