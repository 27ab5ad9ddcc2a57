"""In-memory audit store.

Not durable: events are lost on restart. Keeps at most ``max_events`` of the
most recent appends.
"""

from __future__ import annotations

import threading
from datetime import datetime

from ourstreet.adapters.audit_store.base import AbstractAuditStore, in_range, newest_first
from ourstreet.schemas.audit import AuditEvent


class InMemoryAuditStore(AbstractAuditStore):
    """Thread-safe, bounded, append-only list of events."""

    def __init__(self, max_events: int | None = 10000) -> None:
        if max_events is not None and max_events < 1:
            raise ValueError("max_events must be >= 1")
        self._max_events = max_events
        self._events: list[AuditEvent] = []
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def append(self, event: AuditEvent) -> None:
        with self._lock:
            self._events.append(event)
            if self._max_events is not None and len(self._events) > self._max_events:
                del self._events[: len(self._events) - self._max_events]

    def scan(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditEvent]:
        with self._lock:
            snapshot = list(self._events)
        return newest_first(e for e in snapshot if in_range(e, start, end))

    def prune(self, before: datetime) -> int:
        with self._lock:
            kept = [e for e in self._events if e.timestamp >= before]
            removed = len(self._events) - len(kept)
            self._events = kept
        return removed
