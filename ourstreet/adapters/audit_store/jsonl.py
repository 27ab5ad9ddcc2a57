"""Append-only JSON Lines audit store.

One event per line, camelCase keys, in append order. The file survives
restarts; a process-local lock serializes appends, reads and pruning.
Running several workers against one file relies on O_APPEND line writes and
is not coordinated beyond that.
"""

from __future__ import annotations

import contextlib
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterator

from pydantic import ValidationError

from ourstreet.adapters.audit_store.base import AbstractAuditStore, in_range, newest_first
from ourstreet.core.errors import AuditStoreError
from ourstreet.schemas.audit import AuditEvent

logger = logging.getLogger(__name__)


class JsonlAuditStore(AbstractAuditStore):
    """Durable audit store backed by a ``.jsonl`` file.

    Args:
        path: File to append to; parent directories are created on demand.
        lock_timeout_seconds: Upper bound on waiting for the store lock. A
            write or read that cannot get the lock in time is abandoned with
            AuditStoreError instead of blocking the caller.
    """

    def __init__(self, path: str | os.PathLike[str], *, lock_timeout_seconds: float = 2.0) -> None:
        if lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be > 0")
        self._path = Path(path)
        self._lock_timeout = lock_timeout_seconds
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @contextlib.contextmanager
    def _locked(self, operation: str) -> Iterator[None]:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise AuditStoreError(
                code="audit_store_timeout",
                message=f"Timed out waiting for audit store lock during {operation}",
                details={"backend": "jsonl", "context": {"timeout_s": self._lock_timeout}},
            )
        try:
            yield
        finally:
            self._lock.release()

    def _needs_leading_newline(self) -> bool:
        # A crash mid-write can leave a final line without its terminator
        try:
            with open(self._path, "rb") as f:
                f.seek(0, os.SEEK_END)
                if f.tell() == 0:
                    return False
                f.seek(-1, os.SEEK_END)
                return f.read(1) != b"\n"
        except FileNotFoundError:
            return False

    def append(self, event: AuditEvent) -> None:
        line = event.model_dump_json(by_alias=True) + "\n"
        with self._locked("append"):
            try:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                if self._needs_leading_newline():
                    line = "\n" + line
                with open(self._path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as exc:
                raise AuditStoreError(
                    code="audit_store_write_failed",
                    message="Failed to append audit event",
                    details={"backend": "jsonl"},
                ) from exc

    def _read_all(self) -> list[AuditEvent]:
        if not self._path.exists():
            return []

        events: list[AuditEvent] = []
        try:
            with open(self._path, "rb") as f:
                for line_no, raw in enumerate(f, start=1):
                    raw = raw.strip()
                    if not raw:
                        continue
                    try:
                        events.append(AuditEvent.model_validate_json(raw.decode("utf-8")))
                    except (UnicodeDecodeError, ValidationError):
                        logger.warning(
                            "audit.store_corrupt_line",
                            extra={"path": str(self._path), "line_no": line_no},
                        )
        except OSError as exc:
            raise AuditStoreError(
                code="audit_store_read_failed",
                message="Failed to read audit events",
                details={"backend": "jsonl"},
            ) from exc
        return events

    def scan(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditEvent]:
        with self._locked("scan"):
            events = self._read_all()
        return newest_first(e for e in events if in_range(e, start, end))

    def prune(self, before: datetime) -> int:
        with self._locked("prune"):
            events = self._read_all()
            kept = [e for e in events if e.timestamp >= before]
            removed = len(events) - len(kept)
            if not removed:
                return 0

            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            try:
                with open(tmp_path, "w", encoding="utf-8") as f:
                    for event in kept:
                        f.write(event.model_dump_json(by_alias=True) + "\n")
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self._path)
            except OSError as exc:
                raise AuditStoreError(
                    code="audit_store_write_failed",
                    message="Failed to rewrite audit log during pruning",
                    details={"backend": "jsonl"},
                ) from exc

        logger.info(
            "audit.pruned",
            extra={"removed": removed, "kept": len(kept), "before": before.isoformat()},
        )
        return removed
