"""Audit recorder: append security/administrative events and query them back.

Writes are best-effort. A failure to record an event is logged locally and
swallowed so that the request being audited succeeds or fails on its own
merits. Reads propagate store failures as ``AuditStoreError``.

Every read path (detail, stats, security view, export) is computed from the
same ``AbstractAuditStore.scan`` so aggregates can never drift from the
detail view.
"""

from __future__ import annotations

import asyncio
import functools
import json
import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, TypeVar

from ourstreet.adapters.audit_store.base import AbstractAuditStore
from ourstreet.core.errors import AuditStoreError
from ourstreet.schemas.audit import (
    UNKNOWN_ACTOR,
    AuditAction,
    AuditEvent,
    AuditLogFilter,
    AuditLogPage,
    AuditResource,
    AuditStats,
)

logger = logging.getLogger(__name__)

DEFAULT_PAGE_LIMIT = 100
DEFAULT_HISTORY_LIMIT = 50

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_event_id() -> str:
    return f"audit_{uuid.uuid4().hex}"


class AuditRecorder:
    """Append-only audit trail with filtered, paginated and aggregate reads."""

    def __init__(
        self,
        store: AbstractAuditStore,
        *,
        clock: Callable[[], datetime] = _utcnow,
        retention_days: int = 90,
        write_timeout_seconds: float = 2.0,
        read_timeout_seconds: float = 10.0,
    ) -> None:
        self._store = store
        self._clock = clock
        self._retention_days = retention_days
        self._write_timeout = write_timeout_seconds
        self._read_timeout = read_timeout_seconds

    @property
    def store(self) -> AbstractAuditStore:
        return self._store

    # ------------------------------------------------------------------ writes

    def record(
        self,
        *,
        action: AuditAction | str,
        resource: AuditResource | str,
        success: bool,
        user_id: str | None = None,
        user_email: str | None = None,
        user_role: str | None = None,
        resource_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
        event_id: str | None = None,
        timestamp: datetime | None = None,
    ) -> AuditEvent | None:
        """Build and append one event.

        ``event_id`` and ``timestamp`` are generated unless supplied.

        Returns:
            The stored event, or None if it could not be built or appended.
        """
        try:
            event = AuditEvent(
                id=event_id or _new_event_id(),
                timestamp=timestamp or self._clock(),
                user_id=user_id,
                user_email=user_email or UNKNOWN_ACTOR,
                user_role=user_role,
                action=AuditAction(action),
                resource=AuditResource(resource),
                resource_id=resource_id,
                ip_address=ip_address,
                user_agent=user_agent,
                success=success,
                error_message=None if success else error_message,
                details=details,
            )
        except ValueError:
            # pydantic.ValidationError is a ValueError
            logger.exception(
                "audit.invalid_event",
                extra={"action": str(action), "resource": str(resource)},
            )
            return None

        if not self._try_append(event):
            return None
        return event

    def _try_append(self, event: AuditEvent) -> bool:
        try:
            self._store.append(event)
        except Exception:
            logger.exception(
                "audit.append_failed",
                extra={
                    "event_id": event.id,
                    "action": event.action.value,
                    "resource": event.resource.value,
                    "success": event.success,
                },
            )
            return False

        logger.debug(
            "audit.recorded",
            extra={
                "event_id": event.id,
                "action": event.action.value,
                "resource": event.resource.value,
                "success": event.success,
                "user_id": event.user_id,
            },
        )
        return True

    def log_success(self, **fields: Any) -> AuditEvent | None:
        fields.pop("error_message", None)
        return self.record(success=True, **fields)

    def log_failure(self, *, error_message: str, **fields: Any) -> AuditEvent | None:
        return self.record(success=False, error_message=error_message, **fields)

    def log_auth(
        self,
        *,
        action: AuditAction | str,
        user_email: str,
        success: bool,
        user_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Record an authentication event (login, logout, signup, refresh...)."""
        return self.record(
            action=action,
            resource=AuditResource.AUTH,
            success=success,
            user_id=user_id,
            user_email=user_email,
            ip_address=ip_address,
            user_agent=user_agent,
            error_message=error_message,
            details=details,
        )

    def log_admin_action(
        self,
        *,
        user_id: str,
        user_email: str,
        user_role: str,
        action: AuditAction | str,
        resource: AuditResource | str,
        success: bool,
        resource_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        error_message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Record a privileged operation performed by an identified admin."""
        return self.record(
            action=action,
            resource=resource,
            success=success,
            user_id=user_id,
            user_email=user_email,
            user_role=user_role,
            resource_id=resource_id,
            ip_address=ip_address,
            user_agent=user_agent,
            error_message=error_message,
            details=details,
        )

    def log_security_event(
        self,
        *,
        action: AuditAction | str,
        resource: AuditResource | str,
        error_message: str,
        user_id: str | None = None,
        user_email: str | None = None,
        resource_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> AuditEvent | None:
        """Record a security-relevant rejection (unauthorized access, rate limit)."""
        return self.record(
            action=action,
            resource=resource,
            success=False,
            user_id=user_id,
            user_email=user_email,
            resource_id=resource_id,
            ip_address=ip_address,
            user_agent=user_agent,
            error_message=error_message,
            details=details,
        )

    # ------------------------------------------------------------------- reads

    def get_audit_logs(self, filters: AuditLogFilter | None = None) -> AuditLogPage:
        """Return one page of matching events, most recent first.

        ``total`` counts every match, ignoring ``limit`` and ``offset``.
        """
        f = filters or AuditLogFilter()
        matches = [
            e for e in self._store.scan(f.start_date, f.end_date) if f.matches(e)
        ]
        total = len(matches)
        page = matches[f.offset : f.offset + f.limit]
        return AuditLogPage(
            logs=page,
            total=total,
            limit=f.limit,
            offset=f.offset,
            has_more=f.offset + f.limit < total,
        )

    def get_resource_audit_logs(
        self,
        resource: AuditResource | str,
        resource_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[AuditEvent]:
        f = AuditLogFilter(
            resource=AuditResource(resource),
            resource_id=resource_id,
            limit=limit,
        )
        return self.get_audit_logs(f).logs

    def get_user_audit_logs(
        self,
        user_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> list[AuditEvent]:
        return self.get_audit_logs(AuditLogFilter(user_id=user_id, limit=limit)).logs

    def get_security_events(self, limit: int = DEFAULT_PAGE_LIMIT) -> list[AuditEvent]:
        """Failures plus unauthorized-access, rate-limit and role-change events."""
        if limit < 1:
            return []
        events = [e for e in self._store.scan() if e.is_security_event]
        return events[:limit]

    def get_audit_stats(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> AuditStats:
        # Reuse the filter model so date bounds are normalized the same way
        bounds = AuditLogFilter(start_date=start_date, end_date=end_date)
        events = self._store.scan(bounds.start_date, bounds.end_date)

        actions: Counter[str] = Counter(e.action.value for e in events)
        resources: Counter[str] = Counter(e.resource.value for e in events)
        success_count = sum(1 for e in events if e.success)

        return AuditStats(
            total_logs=len(events),
            success_count=success_count,
            failure_count=len(events) - success_count,
            action_breakdown=dict(actions),
            resource_breakdown=dict(resources),
            unique_users=len({e.user_id for e in events if e.user_id}),
        )

    def export_audit_logs(
        self,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> str:
        """Serialize every event in the range, all fields, as a JSON array."""
        bounds = AuditLogFilter(start_date=start_date, end_date=end_date)
        events = self._store.scan(bounds.start_date, bounds.end_date)
        return json.dumps([e.to_wire() for e in events], indent=2)

    # --------------------------------------------------------------- retention

    def clear_old_logs(self, older_than_days: int | None = None) -> int:
        """Drop events older than the retention window. Returns the count removed."""
        days = self._retention_days if older_than_days is None else older_than_days
        if days < 0:
            raise ValueError("older_than_days must be >= 0")
        cutoff = self._clock() - timedelta(days=days)
        removed = self._store.prune(cutoff)
        logger.info("audit.retention_applied", extra={"older_than_days": days, "removed": removed})
        return removed

    # ----------------------------------------------------- event loop offload

    async def _offload(self, method: Callable[..., T], timeout: float, *args: Any, **kwargs: Any) -> T:
        # Store I/O (file appends with fsync, full scans) must not block the loop
        loop = asyncio.get_running_loop()
        return await asyncio.wait_for(
            loop.run_in_executor(None, functools.partial(method, *args, **kwargs)),
            timeout=timeout,
        )

    async def write(self, method: Callable[..., AuditEvent | None], /, **fields: Any) -> AuditEvent | None:
        """Run a ``record``/``log_*`` method in the thread pool.

        Keeps the best-effort contract: if the write does not finish within
        the write timeout it is logged and None is returned. The write itself
        may still complete in its worker thread.

        Usage:
            await recorder.write(recorder.log_auth, action=..., user_email=...)
        """
        try:
            return await self._offload(method, self._write_timeout, **fields)
        except asyncio.TimeoutError:
            logger.warning(
                "audit.write_timeout",
                extra={
                    "operation": method.__name__,
                    "timeout_seconds": self._write_timeout,
                    "action": str(fields.get("action")),
                },
            )
            return None

    async def read(self, method: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Run a query method in the thread pool, bounded by the read timeout.

        Raises:
            AuditStoreError: If the store fails or the query times out.
        """
        try:
            return await self._offload(method, self._read_timeout, *args, **kwargs)
        except asyncio.TimeoutError as exc:
            logger.warning(
                "audit.read_timeout",
                extra={"operation": method.__name__, "timeout_seconds": self._read_timeout},
            )
            raise AuditStoreError(
                code="audit_store_timeout",
                message="Timed out reading audit events",
                details={"context": {"timeout_s": self._read_timeout}},
            ) from exc
