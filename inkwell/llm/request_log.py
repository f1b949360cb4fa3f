"""
AI request log.

Every generation call is recorded with :meth:`RequestLogger.log_request` and
closed by exactly one of ``log_success``, ``log_error`` or ``log_aborted``.
Hosts may plug in their own implementation; :class:`AIRequestLogger` keeps a
bounded in-memory history and mirrors each event to ``logging``.
"""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_ERROR = "error"
STATUS_ABORTED = "aborted"


class RequestLogger(Protocol):
    def log_request(self, meta: dict[str, Any]) -> str: ...

    def log_success(self, log_id: str, text: str, duration_ms: int) -> None: ...

    def log_error(self, log_id: str, message: str, duration_ms: int) -> None: ...

    def log_aborted(self, log_id: str, duration_ms: int) -> None: ...


@dataclass
class RequestLogEntry:
    log_id: str
    meta: dict[str, Any]
    status: str = STATUS_PENDING
    response: str = ""
    error: str = ""
    duration_ms: int | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AIRequestLogger:
    """
    In-memory request log.

    Parameters
    ----------
    max_entries:
        Oldest entries are discarded beyond this size.
    """

    def __init__(self, max_entries: int = 50) -> None:
        self._entries: deque[RequestLogEntry] = deque(maxlen=max_entries)
        self._by_id: dict[str, RequestLogEntry] = {}

    @property
    def entries(self) -> list[RequestLogEntry]:
        return list(self._entries)

    def get(self, log_id: str) -> RequestLogEntry | None:
        return self._by_id.get(log_id)

    def clear(self) -> None:
        self._entries.clear()
        self._by_id.clear()

    def log_request(self, meta: dict[str, Any]) -> str:
        log_id = uuid.uuid4().hex
        if len(self._entries) == self._entries.maxlen:
            evicted = self._entries[0]
            self._by_id.pop(evicted.log_id, None)
        entry = RequestLogEntry(log_id=log_id, meta=dict(meta))
        self._entries.append(entry)
        self._by_id[log_id] = entry
        logger.info(
            "AI request %s: provider=%s model=%s max_tokens=%s",
            log_id[:8], meta.get("provider"), meta.get("model"), meta.get("max_tokens"),
        )
        return log_id

    def _finish(self, log_id: str, status: str, duration_ms: int) -> RequestLogEntry | None:
        entry = self._by_id.get(log_id)
        if entry is None:
            return None
        entry.status = status
        entry.duration_ms = duration_ms
        return entry

    def log_success(self, log_id: str, text: str, duration_ms: int) -> None:
        entry = self._finish(log_id, STATUS_SUCCESS, duration_ms)
        if entry is not None:
            entry.response = text
        logger.info("AI request %s succeeded in %dms (%d chars)", log_id[:8], duration_ms, len(text))

    def log_error(self, log_id: str, message: str, duration_ms: int) -> None:
        entry = self._finish(log_id, STATUS_ERROR, duration_ms)
        if entry is not None:
            entry.error = message
        logger.warning("AI request %s failed after %dms: %s", log_id[:8], duration_ms, message)

    def log_aborted(self, log_id: str, duration_ms: int) -> None:
        self._finish(log_id, STATUS_ABORTED, duration_ms)
        logger.info("AI request %s aborted after %dms", log_id[:8], duration_ms)
