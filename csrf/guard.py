"""
csrf/guard.py -- CSRF check for state-changing requests.

Runs after authentication (the caller passes the authenticated user id).
Read-only methods pass through untouched. For every other method the
request must present the user's live CSRF token, which is consumed and
replaced in the same step; the replacement is returned so the response
stage can hand it back to the client.

Token sources, in priority order:
  1. X-CSRF-Token header           -- SPA clients (fetch/axios interceptors)
  2. _csrf field in the body       -- JSON bodies and HTML form posts
  3. _csrf query parameter         -- fallback for body-less DELETEs

Layer rule: imports only core/ and this package. The guard never looks up
users; identity comes from the caller.
"""

from __future__ import annotations

import logging

from starlette.requests import Request

from core.errors import Forbidden
from csrf.store import CsrfTokenStore

logger = logging.getLogger("otpgate.csrf")

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
CSRF_HEADER = "X-CSRF-Token"
CSRF_FIELD = "_csrf"

_FORM_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def extract_token(request: Request) -> str | None:
    """Return the CSRF token presented by the request, or None."""
    header_token = request.headers.get(CSRF_HEADER)
    if header_token:
        return header_token

    body_token = await _token_from_body(request)
    if body_token:
        return body_token

    query_token = request.query_params.get(CSRF_FIELD)
    if query_token:
        return query_token
    return None


async def enforce_csrf(request: Request, store: CsrfTokenStore, user_id: int | None) -> str | None:
    """Validate and rotate the request's CSRF token.

    Returns the replacement token, or None for read-only methods (no check,
    no rotation). Raises Forbidden on every failure path.
    """
    if request.method.upper() in SAFE_METHODS:
        return None

    if user_id is None:
        raise Forbidden("User not authenticated for CSRF validation")

    token = await extract_token(request)
    if not token:
        raise Forbidden("CSRF token is missing")

    new_token = store.rotate(user_id, token)
    if new_token is None:
        logger.info("CSRF rejection for user %s on %s %s", user_id, request.method, request.url.path)
        raise Forbidden("Invalid or expired CSRF token")
    return new_token


async def _token_from_body(request: Request) -> str | None:
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(_FORM_TYPES):
        form = await request.form()
        value = form.get(CSRF_FIELD)
        return value if isinstance(value, str) else None

    if "json" not in content_type:
        return None
    if not await request.body():
        return None
    try:
        payload = await request.json()
    except ValueError:
        # Malformed JSON is reported by request validation, not here.
        return None
    if isinstance(payload, dict):
        value = payload.get(CSRF_FIELD)
        return value if isinstance(value, str) else None
    return None
