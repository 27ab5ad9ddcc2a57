"""Admin audit log endpoint.

``GET /api/admin/audit-logs`` serves five views of the audit trail: a
filtered page (default), aggregate counts (``stats=true``), the security
events view (``security=true``) and a full JSON download (``export=true``).
Every call, whatever the view, is itself recorded in the audit trail with the
filters that were applied.

Malformed query values are ignored (the filter is simply not applied) so the
audit UI keeps working on partially valid input; the ignored parameter names
are logged and captured in the access event.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timezone
from typing import Any, Mapping

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from ourstreet.core.audit import get_audit_recorder
from ourstreet.core.auth import require_admin
from ourstreet.core.errors import AuditStoreError
from ourstreet.core.rate_limit import apply_rate_limit_headers, rate_limited
from ourstreet.core.rate_limit_policies import ADMIN
from ourstreet.core.request_meta import get_request_metadata
from ourstreet.schemas.audit import AuditAction, AuditLogFilter, AuditResource
from ourstreet.schemas.auth import TokenClaims
from ourstreet.services.audit_service import AuditRecorder

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@dataclass
class AuditQuery:
    filters: AuditLogFilter
    export: bool = False
    stats: bool = False
    security: bool = False
    ignored: list[str] = field(default_factory=list)

    @property
    def view(self) -> str:
        if self.export:
            return "export"
        if self.stats:
            return "stats"
        if self.security:
            return "security"
        return "logs"


def parse_filter_date(value: str, *, end_of_day: bool = False) -> datetime | None:
    """Parse an ISO date or datetime query value.

    A bare date (``2024-05-01``) covers the whole day: start of day for a
    lower bound, last microsecond of the day for an upper bound. Naive values
    are read as UTC. Returns None when the value cannot be parsed.
    """

    raw = value.strip()
    if not raw:
        return None
    try:
        if len(raw) == 10:
            day = date.fromisoformat(raw)
            return datetime.combine(
                day, dt_time.max if end_of_day else dt_time.min, tzinfo=timezone.utc
            )
        if raw.endswith(("Z", "z")):
            raw = raw[:-1] + "+00:00"
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _parse_int(value: str | None, *, minimum: int) -> int | None:
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        return None
    return parsed if parsed >= minimum else None


def parse_audit_query(params: Mapping[str, str]) -> AuditQuery:
    """Build the audit query from raw query parameters.

    Unparseable values are dropped and reported in ``AuditQuery.ignored``.
    """

    ignored: list[str] = []
    criteria: dict[str, Any] = {}

    for param, attr in (("userId", "user_id"), ("userEmail", "user_email")):
        value = (params.get(param) or "").strip()
        if value:
            criteria[attr] = value

    for param, enum_type in (("action", AuditAction), ("resource", AuditResource)):
        value = params.get(param)
        if value:
            try:
                criteria[param] = enum_type(value)
            except ValueError:
                ignored.append(param)

    success = params.get("success")
    if success is not None:
        if success.lower() in ("true", "false"):
            criteria["success"] = success.lower() == "true"
        else:
            ignored.append("success")

    for param, attr, end_of_day in (
        ("startDate", "start_date", False),
        ("endDate", "end_date", True),
    ):
        value = params.get(param)
        if value:
            parsed = parse_filter_date(value, end_of_day=end_of_day)
            if parsed is None:
                ignored.append(param)
            else:
                criteria[attr] = parsed

    for param, minimum in (("limit", 1), ("offset", 0)):
        value = params.get(param)
        if value is not None:
            parsed_int = _parse_int(value, minimum=minimum)
            if parsed_int is None:
                ignored.append(param)
            else:
                criteria[param] = parsed_int

    return AuditQuery(
        filters=AuditLogFilter(**criteria),
        export=params.get("export") == "true",
        stats=params.get("stats") == "true",
        security=params.get("security") == "true",
        ignored=ignored,
    )


def _applied_filters(query: AuditQuery) -> dict[str, Any]:
    return query.filters.model_dump(
        mode="json",
        by_alias=True,
        exclude_none=True,
        exclude={"limit", "offset"},
    )


@router.get("/audit-logs", dependencies=[Depends(rate_limited(ADMIN))])
async def get_audit_logs(
    request: Request,
    admin: TokenClaims = Depends(require_admin),
    recorder: AuditRecorder = Depends(get_audit_recorder),
) -> Response:
    """Query the audit trail. Admin only."""

    query = parse_audit_query(request.query_params)
    if query.ignored:
        logger.warning(
            "audit.query_params_ignored",
            extra={"ignored": query.ignored, "user_id": admin.user_id},
        )

    meta = get_request_metadata(request)
    details: dict[str, Any] = {
        "endpoint": "audit-logs",
        "view": query.view,
        "filters": _applied_filters(query),
    }
    if query.ignored:
        details["ignoredParams"] = query.ignored

    await recorder.write(
        recorder.log_admin_action,
        user_id=admin.user_id,
        user_email=admin.email,
        user_role=admin.role,
        action=AuditAction.EXPORT if query.export else AuditAction.VIEW,
        resource=AuditResource.AUDIT_LOG,
        ip_address=meta.ip_address,
        user_agent=meta.user_agent,
        success=True,
        details=details,
    )

    f = query.filters
    try:
        if query.export:
            payload = await recorder.read(recorder.export_audit_logs, f.start_date, f.end_date)
            response: Response = Response(
                content=payload,
                media_type="application/json",
                headers={
                    "Content-Disposition": (
                        f'attachment; filename="audit-logs-{int(time.time() * 1000)}.json"'
                    )
                },
            )
        elif query.stats:
            stats = await recorder.read(recorder.get_audit_stats, f.start_date, f.end_date)
            response = JSONResponse(
                {"success": True, "data": stats.model_dump(mode="json", by_alias=True)}
            )
        elif query.security:
            events = await recorder.read(recorder.get_security_events, f.limit)
            response = JSONResponse(
                {
                    "success": True,
                    "data": {
                        "logs": [e.to_wire() for e in events],
                        "total": len(events),
                    },
                }
            )
        else:
            page = await recorder.read(recorder.get_audit_logs, f)
            response = JSONResponse(
                {"success": True, "data": page.model_dump(mode="json", by_alias=True)}
            )
    except AuditStoreError as exc:
        logger.error(
            "audit.query_failed",
            extra={"error_code": exc.code, "view": query.view},
        )
        raise AuditStoreError(
            code="audit_query_failed",
            message="Failed to fetch audit logs",
        ) from exc

    return apply_rate_limit_headers(request, response)
