"""Logging setup for hosts embedding the chatrelay engine.

Library modules only ever call ``logging.getLogger(__name__)``; nothing in the
engine installs handlers on import. Hosts call :func:`setup_logging` once (or
:func:`configure_from_settings`) to get a rotating log file under
``~/.chatrelay/logs`` and an optional console mirror.
"""

from __future__ import annotations

import logging
import logging.handlers
import os
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..services.settings import Settings

__all__ = ["setup_logging", "configure_from_settings", "get_log_path", "reset_logging"]

_DEFAULT_LOG_DIR = Path.home() / ".chatrelay" / "logs"
_LOG_FILENAME = "chatrelay.log"
_LOG_DIR_ENV = "CHATRELAY_LOG_DIR"
_LOG_LEVEL_ENV = "CHATRELAY_LOG_LEVEL"
# Transport internals are chatty at DEBUG and drown the stream traces.
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "hpack")
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_log_path: Path | None = None


def setup_logging(
    level: int | str | None = None,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 2_000_000,
    backup_count: int = 5,
    force: bool = False,
) -> Path:
    """Install rotating-file and console handlers on the root logger.

    Repeated calls are no-ops unless ``force`` is set, so libraries and hosts
    can both call this without stacking handlers.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    resolved_level = _resolve_level(level)
    target_dir = Path(log_dir or os.environ.get(_LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / _LOG_FILENAME

    formatter = logging.Formatter(fmt=_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    file_handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    handlers: list[logging.Handler] = [file_handler]
    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        handlers.append(stream_handler)

    logging.basicConfig(level=resolved_level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    quiet = max(logging.WARNING, resolved_level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet)

    _log_path = path
    return path


def configure_from_settings(settings: "Settings", *, console: bool = True) -> Path:
    """Configure logging using the debug toggle stored in :class:`Settings`."""

    level = logging.DEBUG if settings.debug_logging else logging.INFO
    return setup_logging(level, console=console, force=True)


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging`."""

    return _log_path


def reset_logging() -> None:
    """Forget the configured log path so the next setup call reinstalls handlers."""

    global _log_path
    _log_path = None


def _resolve_level(level: int | str | None) -> int:
    if level is None:
        level = os.environ.get(_LOG_LEVEL_ENV, "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(str(level).strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO
