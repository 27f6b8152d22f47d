# src/render_queue/core/activity.py

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

logger = logging.getLogger(__name__)

EntryKind = Literal["info", "success", "error"]

_LEVELS: dict[str, int] = {
    "info": logging.INFO,
    "success": logging.INFO,
    "error": logging.WARNING,
}


@dataclass(frozen=True, slots=True)
class LogEntry:
    id: int
    timestamp: str
    message: str
    kind: EntryKind


class ActivityLog:
    """
    User-facing activity feed (what the operator sees next to the queue).

    Every entry is also mirrored into Python logging.
    Recording is fire-and-forget: it never raises into the caller.
    """

    def __init__(self, limit: int = 500) -> None:
        self._entries: deque[LogEntry] = deque(maxlen=max(1, int(limit)))
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, message: str, kind: EntryKind = "info") -> None:
        try:
            entry = LogEntry(
                id=next(self._ids),
                timestamp=datetime.now().astimezone().strftime("%H:%M:%S"),
                message=message,
                kind=kind,
            )
            with self._lock:
                self._entries.append(entry)
            logger.log(_LEVELS.get(kind, logging.INFO), "[%s] %s", kind, message)
        except Exception:
            logger.debug("Activity log write failed.", exc_info=True)

    def info(self, message: str) -> None:
        self.add(message, "info")

    def success(self, message: str) -> None:
        self.add(message, "success")

    def error(self, message: str) -> None:
        self.add(message, "error")

    def tail(self, n: int | None = None) -> list[LogEntry]:
        with self._lock:
            entries = list(self._entries)
        if n is None:
            return entries
        return entries[-n:] if n > 0 else []

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
