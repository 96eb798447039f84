"""
auth/tokens.py -- Session JWTs and the cookies that carry them.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       email, id, role, and expiry (7 days by default). Verification returns
       None on any failure -- the auth guard turns that into a 401. There is
       no server-side revocation list: a token dies by expiry or by the
       client discarding it.

  Cookies: the session token goes into "authToken" (httpOnly -- scripts never
       see it) and the CSRF token into "csrfToken" (readable by the SPA so it
       can echo it in the X-CSRF-Token header). Both are path=/ and
       samesite=lax; secure only when SECURE_COOKIES=true (production).

  SECRET_KEY: sourced from core.config.get_settings(), which refuses short
       or missing keys in production.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import SessionClaims
from core.config import get_settings

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

SESSION_COOKIE = "authToken"
CSRF_COOKIE = "csrfToken"

# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_session_token(user_id: int, email: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT over {email, id, role}.

    Args:
        user_id:        Numeric user ID stored in the DB.
        email:          Account email, also stored as the subject claim.
        role:           "user" or "admin".
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.session_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.session_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": email,
        "email": email,
        "id": user_id,
        "role": role,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str) -> SessionClaims | None:
    """Verify a JWT and return its claims, or None on any failure.

    Signature, expiry, and the presence of every claim the guards rely on
    are all checked; a token missing any of them is as bad as a forged one.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    user_id = payload.get("id")
    email = payload.get("email")
    role = payload.get("role")
    if not isinstance(user_id, int) or not isinstance(email, str) or not isinstance(role, str):
        return None
    return SessionClaims(id=user_id, email=email, role=role)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str) -> None:
    """Write the session JWT as an httpOnly cookie; max_age matches the JWT expiry."""
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.session_expire_seconds,
        path="/",
    )


def set_csrf_cookie(response, csrf_token: str) -> None:
    """Write the CSRF token as a script-readable cookie that lives as long as the token."""
    response.set_cookie(
        CSRF_COOKIE,
        value=csrf_token,
        httponly=False,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=_settings.csrf_token_ttl_seconds,
        path="/",
    )


def clear_auth_cookies(response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
