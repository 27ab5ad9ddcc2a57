"""Audit store interfaces.

Stores are append-only: the only way to remove events is a date-ranged
:meth:`AbstractAuditStore.prune`. Filtering beyond the date range happens in
the recorder, so every read path goes through the same :meth:`scan`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable

from ourstreet.schemas.audit import AuditEvent


def in_range(event: AuditEvent, start: datetime | None, end: datetime | None) -> bool:
    """Inclusive date range check on the event timestamp."""
    if start is not None and event.timestamp < start:
        return False
    if end is not None and event.timestamp > end:
        return False
    return True


def newest_first(events_in_append_order: Iterable[AuditEvent]) -> list[AuditEvent]:
    """Order events by timestamp descending.

    Ties keep reverse append order, so the later append comes first.
    """
    return sorted(
        reversed(list(events_in_append_order)),
        key=lambda e: e.timestamp,
        reverse=True,
    )


class AbstractAuditStore(ABC):
    """Interface for durable audit event storage."""

    @abstractmethod
    def append(self, event: AuditEvent) -> None:
        """Persist one event.

        Raises:
            AuditStoreError: If the event could not be written.
        """
        raise NotImplementedError

    @abstractmethod
    def scan(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditEvent]:
        """Return events within the inclusive range, most recent first.

        Raises:
            AuditStoreError: If the store cannot be read.
        """
        raise NotImplementedError

    @abstractmethod
    def prune(self, before: datetime) -> int:
        """Delete events with a timestamp strictly before ``before``.

        Returns:
            Number of events removed.
        """
        raise NotImplementedError
