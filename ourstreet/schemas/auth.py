"""Pydantic schemas for authentication requests, responses and token claims."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TokenClaims(BaseModel):
    """Claims carried by a bearer token."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    role: str
    expires_at: datetime


class LoginRequest(BaseModel):
    # Optional so that missing credentials are audited rather than rejected by FastAPI
    email: str | None = None
    password: str | None = None


class PublicUser(BaseModel):
    """User fields safe to return to clients."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    email: str
    name: str
    role: str
    created_at: datetime


class AuthResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    success: bool
    message: str | None = None
    token: str | None = None
    user: PublicUser | None = None
    error: str | None = Field(None, description="Client-safe failure reason.")
