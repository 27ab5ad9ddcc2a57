"""In-memory user directory used by the login and token refresh flows.

User persistence belongs to the wider application; this directory is the
seam it plugs into. Passwords are stored as bcrypt hashes via passlib.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone

from passlib.context import CryptContext

from ourstreet.core.config import settings

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.auth.bcrypt_rounds,
)


def hash_password(password: str) -> str:
    """Hash a password with the configured bcrypt work factor."""
    return pwd_context.hash(password)


def verify_password(password: str, hashed_password: str) -> bool:
    """Check a password against a stored hash.

    Hashes passlib cannot identify never verify.
    """
    if not hashed_password:
        return False
    try:
        return pwd_context.verify(password, hashed_password)
    except ValueError:
        return False


@dataclass(frozen=True)
class User:
    id: str
    email: str
    name: str
    role: str
    password_hash: str = field(repr=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class InMemoryUserDirectory:
    """Thread-safe lookup of users by id and (case-insensitive) email."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._by_id: dict[str, User] = {}

    def add_user(
        self,
        *,
        email: str,
        password: str,
        name: str = "",
        role: str = "citizen",
        user_id: str | None = None,
    ) -> User:
        user = User(
            id=user_id or uuid.uuid4().hex,
            email=email.lower(),
            name=name,
            role=role,
            password_hash=hash_password(password),
        )
        with self._lock:
            if self._find_by_email_locked(user.email) is not None:
                raise ValueError(f"user with email {user.email!r} already exists")
            self._by_id[user.id] = user
        return user

    def _find_by_email_locked(self, email: str) -> User | None:
        email = email.lower()
        return next((u for u in self._by_id.values() if u.email == email), None)

    def find_by_email(self, email: str) -> User | None:
        with self._lock:
            return self._find_by_email_locked(email)

    def find_by_id(self, user_id: str) -> User | None:
        with self._lock:
            return self._by_id.get(user_id)

    def set_role(self, user_id: str, role: str) -> User:
        with self._lock:
            user = self._by_id.get(user_id)
            if user is None:
                raise KeyError(user_id)
            updated = replace(user, role=role)
            self._by_id[user_id] = updated
            return updated

    def authenticate(self, user: User, password: str) -> bool:
        return verify_password(password, user.password_hash)
