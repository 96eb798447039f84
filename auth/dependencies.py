"""
auth/dependencies.py -- Authentication and role checks for protected routes.

Two steps, used in this order by the guard pipeline (api/guards.py):
  1. authenticate(request) -- extract and verify the session JWT.
  2. check_role(claims, roles) -- compare the claim role with the route's roles.

Token sources, in priority order:
  1. Authorization: Bearer <token> header -- API clients and tests.
  2. "authToken" cookie -- set by POST /auth/verify-otp for the SPA.

The claims are trusted as signed; no database lookup happens here. A user
deleted or re-roled after login keeps their claims until the token expires,
and owner-scoped operations re-read the row by id.

try_authenticate() is the soft variant (returns None on failure); logout
uses it to find whose CSRF entry to drop without requiring a session.

Layer rule: may import fastapi request types; no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable

from starlette.requests import Request

from auth.models import SessionClaims
from auth.tokens import SESSION_COOKIE, decode_session_token
from core.errors import Forbidden, Unauthorized


def extract_session_token(request: Request) -> str | None:
    """Return the raw session token from the Bearer header or the cookie."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, credentials = auth_header.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return request.cookies.get(SESSION_COOKIE) or None


def authenticate(request: Request) -> SessionClaims:
    """Require a valid session. Raises Unauthorized otherwise."""
    token = extract_session_token(request)
    if not token:
        raise Unauthorized("No token provided")
    claims = decode_session_token(token)
    if claims is None:
        raise Unauthorized("Invalid or expired token")
    return claims


def try_authenticate(request: Request) -> SessionClaims | None:
    token = extract_session_token(request)
    return decode_session_token(token) if token else None


def check_role(claims: SessionClaims, roles: Iterable[str]) -> None:
    """Raise Forbidden unless claims.role is one of roles.

    An empty roles collection means "any authenticated user".
    """
    allowed = frozenset(roles)
    if allowed and claims.role not in allowed:
        raise Forbidden("Insufficient role")
