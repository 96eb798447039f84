"""
auth/session.py -- Session issuance after a successful OTP verification.

A session is two credentials minted together:
  - the signed JWT over {email, id, role} (7 days), and
  - the user's first CSRF token, stored in the process-wide CSRF store.

Placing them in cookies is the transport layer's job (see auth/tokens.py
cookie helpers); this module only produces them.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.models import ROLE_USER, User
from auth.tokens import create_session_token
from csrf.store import CsrfTokenStore


@dataclass(frozen=True)
class IssuedSession:
    token: str
    csrf_token: str
    user: dict  # {id, email, role}
    role: str


class SessionIssuer:
    def __init__(self, csrf_store: CsrfTokenStore) -> None:
        self.csrf_store = csrf_store

    def issue(self, user: User) -> IssuedSession:
        """Mint the session credential and a fresh CSRF token for user.

        Any CSRF token previously issued to this user stops validating.
        """
        if user.id is None:
            raise ValueError("Cannot issue a session for an unsaved user")
        role = user.role or ROLE_USER
        token = create_session_token(user.id, user.email, role)
        csrf_token = self.csrf_store.issue_for(user.id)
        return IssuedSession(
            token=token,
            csrf_token=csrf_token,
            user={"id": user.id, "email": user.email, "role": role},
            role=role,
        )

    def reissue_token(self, user: User) -> str:
        """Re-sign the session credential after the user's email changed.

        The CSRF entry is keyed by id and is left as is.
        """
        return create_session_token(user.id, user.email, user.role or ROLE_USER)
