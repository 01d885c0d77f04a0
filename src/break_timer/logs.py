"""Package logger and the in-memory log buffer served at /api/logs."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Deque

logger = logging.getLogger("break_timer")

# Circular buffer to store recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Logging handler that captures records to the circular buffer."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


def install_log_buffer(level: int = logging.INFO) -> LogBufferHandler:
    """Attach the buffer handler to the package logger (once)."""
    for handler in logger.handlers:
        if isinstance(handler, LogBufferHandler):
            return handler
    handler = LogBufferHandler()
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(level)
    return handler


def recent_logs(limit: int = 50) -> list[dict]:
    return list(log_buffer)[-limit:] if limit > 0 else []
