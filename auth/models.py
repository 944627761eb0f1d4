"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container) plus free functions. Records carry
no behaviour of their own; lock checks and the public projection are plain
functions over a User so the store (persistence) and the service
(orchestration) can both use them without owning each other's concerns.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional


@dataclass
class User:
    """An identity as persisted by the credential store.

    hashed_password never leaves auth/ -- routes only ever see PublicUser.
    lock_until is epoch seconds; None (or a past instant) means unlocked.
    """

    username: str
    id: Optional[str] = None
    email: Optional[str] = None
    hashed_password: Optional[str] = None
    failed_login_attempts: int = 0
    lock_until: Optional[float] = None
    is_active: bool = True
    last_login: Optional[str] = None  # ISO 8601, set on successful authentication
    created_at: Optional[str] = None


@dataclass(frozen=True)
class PublicUser:
    """What callers are allowed to see about an identity."""

    id: str
    username: str
    email: Optional[str] = None
    last_login: Optional[str] = None
    created_at: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "last_login": self.last_login,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class AuthResult:
    token: str
    user: PublicUser


def is_locked(user: User, now: float) -> bool:
    return user.lock_until is not None and user.lock_until > now


def lock_remaining_minutes(user: User, now: float) -> int:
    """Whole minutes until the lock lifts, rounded up (0 when unlocked)."""
    if not is_locked(user, now):
        return 0
    return math.ceil((user.lock_until - now) / 60)


def public_view(user: User) -> PublicUser:
    return PublicUser(
        id=user.id,
        username=user.username,
        email=user.email,
        last_login=user.last_login,
        created_at=user.created_at,
    )
