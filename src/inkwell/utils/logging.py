"""Logging setup for the Inkwell assistant.

Log records carry the id of the turn they were emitted in (``-`` outside a
turn), so a rotated log file can be grepped per turn even when tool and model
modules log without knowing which turn they serve.
"""

from __future__ import annotations

import contextlib
import contextvars
import logging
import logging.handlers
import os
from pathlib import Path
from typing import Iterator

__all__ = ["setup_logging", "bind_turn", "current_turn_id", "get_log_path", "LOG_DIR_ENV"]

LOG_DIR_ENV = "INKWELL_LOG_DIR"
_DEFAULT_LOG_DIR = Path.home() / ".inkwell" / "logs"
_LOG_FILE_NAME = "inkwell.log"
_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | [%(turn_id)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_NOISY_LOGGERS: tuple[str, ...] = ("asyncio", "httpx", "httpcore", "openai")

_turn_id: contextvars.ContextVar[str] = contextvars.ContextVar("inkwell_turn_id", default="-")
_log_path: Path | None = None


class _TurnIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "turn_id"):
            record.turn_id = _turn_id.get()
        return True


@contextlib.contextmanager
def bind_turn(turn_id: str) -> Iterator[None]:
    """Tag every record logged inside the block (and tasks it spawns) with ``turn_id``."""
    token = _turn_id.set(turn_id)
    try:
        yield
    finally:
        _turn_id.reset(token)


def current_turn_id() -> str:
    return _turn_id.get()


def setup_logging(
    level: int = logging.INFO,
    *,
    log_dir: Path | str | None = None,
    console: bool = True,
    max_bytes: int = 1_000_000,
    backup_count: int = 3,
    force: bool = False,
) -> Path:
    """Send logs to a rotating file and, optionally, warnings and above to stderr.

    Returns the log file path. Repeated calls are no-ops unless ``force`` is set.
    """

    global _log_path
    if _log_path is not None and not force:
        return _log_path

    directory = Path(log_dir or os.environ.get(LOG_DIR_ENV) or _DEFAULT_LOG_DIR).expanduser()
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / _LOG_FILE_NAME

    formatter = logging.Formatter(fmt=_FORMAT, datefmt=_DATE_FORMAT)
    turn_filter = _TurnIdFilter()
    handlers: list[logging.Handler] = [
        logging.handlers.RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
    ]
    if console:
        # The console is shared with the chat loop; keep it to problems only.
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(max(level, logging.WARNING))
        handlers.append(stream_handler)
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(turn_filter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    logging.captureWarnings(True)
    quiet_level = max(level, logging.WARNING)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)

    _log_path = path
    return path


def get_log_path() -> Path | None:
    """Return the active log file, or ``None`` before :func:`setup_logging` ran."""

    return _log_path
