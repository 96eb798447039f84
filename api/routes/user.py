"""
api/routes/user.py -- The caller's own profile.

Routes:
  GET  /api/user/profile          -- read own profile (role: user)
  PUT  /api/user/profile          -- edit name/phone (role: user, CSRF)
  POST /api/user/update-profile   -- change own email (any role, CSRF)

Every query is scoped to the id in the caller's session claims. A session
whose row has since been deleted gets 401 "User not found" -- the claims
outlive the account until the token expires.

Mutating responses carry the rotated CSRF token in the body (csrfToken) and
refresh the csrfToken cookie.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.exc import IntegrityError

from api.guards import AUTHENTICATED_WRITE, USER_READ, USER_WRITE, RequestContext, attach_csrf, guarded
from api.models import EmailUpdateRequest, ProfileResponse, ProfileUpdateRequest, ProfileUpdateResponse, UserOut
from auth.otp import is_valid_email
from auth.session import SessionIssuer
from auth.store import UserStore, db_errors
from auth.tokens import set_session_cookie
from core.errors import InvalidInput, Unauthorized

# Auth policy:
# - GET  /api/user/profile:         role user (USER_READ)
# - PUT  /api/user/profile:         role user + CSRF (USER_WRITE)
# - POST /api/user/update-profile:  any authenticated role + CSRF (AUTHENTICATED_WRITE)
router = APIRouter()


@router.get("/user/profile", response_model=ProfileResponse)
def get_profile(request: Request, ctx: RequestContext = Depends(guarded(USER_READ))) -> ProfileResponse:
    user_store: UserStore = request.app.state.user_store
    with db_errors("Failed to fetch profile"):
        user = user_store.get_by_id(ctx.user.id)
    if user is None:
        raise Unauthorized("User not found")
    return ProfileResponse(user=UserOut.from_user(user))


@router.put("/user/profile", response_model=ProfileUpdateResponse)
def update_profile(
    request: Request,
    response: Response,
    body: ProfileUpdateRequest | None = None,
    ctx: RequestContext = Depends(guarded(USER_WRITE)),
) -> ProfileUpdateResponse:
    """Update first_name / last_name / phone.

    Only fields present in the body are written; an explicit null clears a
    field. A body with none of them changes nothing and answers
    success=false -- the CSRF token was still consumed, so the new one is
    returned either way.
    """
    user_store: UserStore = request.app.state.user_store
    csrf_token = attach_csrf(ctx, response)
    updates = body.model_dump(exclude_unset=True) if body is not None else {}

    with db_errors("Failed to update profile"):
        if updates:
            user = user_store.update_user(ctx.user.id, **updates)
        else:
            user = user_store.get_by_id(ctx.user.id)
    if user is None:
        raise Unauthorized("User not found")

    if not updates:
        return ProfileUpdateResponse(
            success=False,
            message="No valid fields to update",
            user=UserOut.from_user(user),
            csrf_token=csrf_token,
        )
    return ProfileUpdateResponse(
        message="Profile updated successfully",
        user=UserOut.from_user(user),
        csrf_token=csrf_token,
    )


@router.post("/user/update-profile", response_model=ProfileUpdateResponse)
def update_email(
    request: Request,
    response: Response,
    body: EmailUpdateRequest,
    ctx: RequestContext = Depends(guarded(AUTHENTICATED_WRITE)),
) -> ProfileUpdateResponse:
    """Change the caller's email.

    The session cookie is re-signed so its claims carry the new address.
    Taken addresses are rejected; the UNIQUE constraint backs up the
    pre-check when two accounts race for the same address.
    """
    user_store: UserStore = request.app.state.user_store
    issuer: SessionIssuer = request.app.state.session_issuer
    csrf_token = attach_csrf(ctx, response)

    if not is_valid_email(body.email):
        raise InvalidInput("Invalid email format")

    with db_errors("Failed to update email"):
        if user_store.email_in_use(body.email, exclude_id=ctx.user.id):
            raise InvalidInput("Email already in use")
        try:
            user = user_store.update_user(ctx.user.id, email=body.email)
        except IntegrityError as exc:
            raise InvalidInput("Email already in use") from exc
    if user is None:
        raise Unauthorized("User not found")

    set_session_cookie(response, issuer.reissue_token(user))
    return ProfileUpdateResponse(
        message="Email updated successfully",
        user=UserOut.from_user(user),
        csrf_token=csrf_token,
    )
