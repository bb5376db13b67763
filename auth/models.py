"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service layer do the work; these classes only own domain shape.

Session.user_id is a foreign-key id, never a User reference. Users and
sessions are persisted and reaped independently.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum


class Role(str, Enum):
    """Closed set of roles. Admin checks go through auth.admin only."""

    user = "user"
    admin = "admin"


@dataclass
class User:
    """An identity that can sign in.

    email is always stored normalized (trimmed, lower-cased), which is what
    makes the UNIQUE constraint case-insensitive.
    password_hash is a bcrypt hash; the plaintext is never kept.
    """

    email: str
    password_hash: str
    role: Role = Role.user
    id: int | None = None
    created_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin

    def to_public(self) -> dict:
        """Wire shape shared by every SSO service: userId / email / role."""
        return {"userId": self.id, "email": self.email, "role": self.role.value}


@dataclass
class Session:
    """A revocable server-side proof of a prior successful sign-in.

    Timestamps are epoch seconds (float) so TTL predicates are plain numeric
    comparisons in SQL.
    """

    id: str
    user_id: int
    ip_address: str
    user_agent: str
    created_at: float
    updated_at: float

    def to_public(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


@dataclass(frozen=True)
class TokenIdentity:
    """The identity asserted by a verified token."""

    user_id: int
    email: str


@dataclass
class AuthResult:
    """Outcome of sign-in, sign-up and refresh: who, which session, which token."""

    user: User
    session: Session
    token: str


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()
