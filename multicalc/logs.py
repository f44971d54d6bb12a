"""Process-wide JSON line logging."""

from __future__ import annotations

import json
import logging
import sys
import threading
from datetime import datetime
from typing import IO

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        moment = datetime.fromtimestamp(record.created).astimezone()
        payload = {
            "time": moment.isoformat(timespec="microseconds"),
            "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
            "msg": record.getMessage(),
        }
        return json.dumps(payload, ensure_ascii=False)


class _LineHandler(logging.Handler):
    """Writes to a fixed stream, or to whatever ``sys.stdout`` is at the time."""

    def __init__(self, target: IO[str] | None = None) -> None:
        super().__init__()
        self.target = target

    def emit(self, record: logging.LogRecord) -> None:
        try:
            stream = self.target if self.target is not None else sys.stdout
            stream.write(self.format(record) + "\n")
            stream.flush()
        except Exception:
            self.handleError(record)


_logger = logging.getLogger("multicalc")
_handler: _LineHandler | None = None
_lock = threading.Lock()


def init_logging(stream: IO[str] | None = None) -> logging.Logger:
    """Set up the shared logger once; a given stream redirects its output."""
    global _handler
    with _lock:
        if _handler is None:
            _handler = _LineHandler(stream)
            _handler.setFormatter(_JsonFormatter())
            _logger.addHandler(_handler)
            _logger.setLevel(logging.INFO)
            _logger.propagate = False
        elif stream is not None:
            _handler.target = stream
    return _logger


def debug(msg: str) -> None:
    init_logging().debug(msg)


def info(msg: str) -> None:
    init_logging().info(msg)


def warn(msg: str) -> None:
    init_logging().warning(msg)


def error(msg: str) -> None:
    init_logging().error(msg)