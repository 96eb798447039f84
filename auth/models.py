"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these classes own the shape.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES: frozenset[str] = frozenset({ROLE_USER, ROLE_ADMIN})


@dataclass
class User:
    """One account, keyed by email.

    otp / otp_expiry hold the outstanding one-time code. They are both None
    or both set: the store writes and clears them together.

    otp_expiry, created_at and updated_at are ISO 8601 UTC strings, the same
    representation the store persists.
    """

    email: str
    role: str = ROLE_USER
    id: int | None = None
    is_verified: bool = False
    otp: str | None = None
    otp_expiry: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    def public_dict(self) -> dict:
        """Profile fields safe to return to clients (never the OTP)."""
        return {
            "id": self.id,
            "email": self.email,
            "role": self.role,
            "is_verified": self.is_verified,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone": self.phone,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class SessionClaims:
    """Identity carried by a verified session token.

    Decoded from the JWT on every request; never looked up in the database,
    so role changes apply from the user's next login.
    """

    id: int
    email: str
    role: str
