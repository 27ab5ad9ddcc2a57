"""Bearer token issuing and verification (HS256 JWTs)."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from jose import JWTError, jwt

from ourstreet.core.config import AuthSettings
from ourstreet.schemas.auth import TokenClaims

logger = logging.getLogger(__name__)


class TokenService:
    """Issue and verify signed bearer tokens carrying user id, email and role."""

    def __init__(
        self,
        *,
        secret: str,
        algorithm: str = "HS256",
        expires_minutes: int = 60 * 24 * 7,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        if not secret:
            raise ValueError("secret must be a non-empty string")
        self._secret = secret
        self._algorithm = algorithm
        self._expires = timedelta(minutes=expires_minutes)
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg: AuthSettings) -> "TokenService":
        return cls(
            secret=cfg.jwt_secret,
            algorithm=cfg.jwt_algorithm,
            expires_minutes=cfg.token_expires_minutes,
        )

    def issue(self, user_id: str, email: str, role: str) -> str:
        issued_at = self._clock()
        payload = {
            "sub": user_id,
            "email": email,
            "role": role,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._expires).timestamp()),
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenClaims | None:
        """Return the token's claims, or None if it is malformed, forged or expired."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                # Expiry is checked below against the injected clock
                options={"verify_exp": False},
            )
        except JWTError as exc:
            logger.info("token.invalid", extra={"reason": type(exc).__name__})
            return None

        try:
            claims = TokenClaims(
                user_id=str(payload["sub"]),
                email=str(payload["email"]),
                role=str(payload["role"]),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
            )
        except (KeyError, TypeError, ValueError):
            logger.info("token.invalid", extra={"reason": "missing_claims"})
            return None

        if claims.expires_at <= self._clock():
            logger.info("token.expired", extra={"user_id": claims.user_id})
            return None
        return claims
