"""Pydantic schemas for audit events and audit log queries.

Fields are snake_case in Python and serialized with camelCase aliases
(``userId``, ``errorMessage``...) on the wire.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

UNKNOWN_ACTOR = "unknown"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    LOGIN = "login"
    LOGOUT = "logout"
    SIGNUP = "signup"
    PASSWORD_RESET = "password_reset"
    TOKEN_REFRESH = "token_refresh"
    ROLE_CHANGE = "role_change"
    BULK_UPDATE = "bulk_update"
    STATUS_CHANGE = "status_change"
    ASSIGNMENT = "assignment"
    FILE_UPLOAD = "file_upload"
    VIEW = "view"
    EXPORT = "export"
    UNAUTHORIZED_ACCESS = "unauthorized_access"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"


class AuditResource(str, Enum):
    USER = "user"
    ISSUE = "issue"
    COMMENT = "comment"
    VOTE = "vote"
    AUTH = "auth"
    ADMIN = "admin"
    UPLOAD = "upload"
    AUDIT_LOG = "audit_log"


# Actions that always count as security events, whatever their outcome
SECURITY_ACTIONS: frozenset[AuditAction] = frozenset(
    {
        AuditAction.UNAUTHORIZED_ACCESS,
        AuditAction.RATE_LIMIT_EXCEEDED,
        AuditAction.ROLE_CHANGE,
    }
)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class AuditEvent(_CamelModel):
    """An immutable record of a security or administrative occurrence."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique event identifier.")
    timestamp: datetime = Field(..., description="UTC creation time.")
    user_id: str | None = Field(None, description="Actor user id, when known.")
    user_email: str = Field(
        UNKNOWN_ACTOR,
        description="Actor email; 'unknown' for anonymous actors.",
    )
    user_role: str | None = Field(None, description="Actor role at the time of the event.")
    action: AuditAction
    resource: AuditResource
    resource_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    success: bool
    error_message: str | None = Field(
        None, description="Failure reason; only set when success is false."
    )
    details: dict[str, Any] | None = Field(
        None, description="Structured context (e.g. filters an admin applied)."
    )

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @field_validator("user_email")
    @classmethod
    def _default_actor(cls, value: str) -> str:
        return value or UNKNOWN_ACTOR

    @property
    def is_security_event(self) -> bool:
        return not self.success or self.action in SECURITY_ACTIONS

    def to_wire(self) -> dict[str, Any]:
        """JSON-compatible dict with camelCase keys, every field included."""
        return self.model_dump(mode="json", by_alias=True)


class AuditLogFilter(_CamelModel):
    """Conjunctive filter for audit log queries; unset fields are not applied."""

    user_id: str | None = None
    user_email: str | None = None
    action: AuditAction | None = None
    resource: AuditResource | None = None
    resource_id: str | None = None
    success: bool | None = None
    start_date: datetime | None = Field(None, description="Inclusive lower bound.")
    end_date: datetime | None = Field(None, description="Inclusive upper bound.")
    limit: int = Field(100, ge=1)
    offset: int = Field(0, ge=0)

    @field_validator("start_date", "end_date")
    @classmethod
    def _ensure_utc(cls, value: datetime | None) -> datetime | None:
        return ensure_utc(value) if value is not None else None

    def matches(self, event: AuditEvent) -> bool:
        if self.user_id is not None and event.user_id != self.user_id:
            return False
        if self.user_email is not None and event.user_email.lower() != self.user_email.lower():
            return False
        if self.action is not None and event.action != self.action:
            return False
        if self.resource is not None and event.resource != self.resource:
            return False
        if self.resource_id is not None and event.resource_id != self.resource_id:
            return False
        if self.success is not None and event.success != self.success:
            return False
        return True


class AuditLogPage(_CamelModel):
    logs: list[AuditEvent]
    total: int
    limit: int
    offset: int
    has_more: bool


class AuditStats(_CamelModel):
    total_logs: int = 0
    success_count: int = 0
    failure_count: int = 0
    action_breakdown: dict[str, int] = Field(default_factory=dict)
    resource_breakdown: dict[str, int] = Field(default_factory=dict)
    unique_users: int = 0
