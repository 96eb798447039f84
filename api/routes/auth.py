"""
api/routes/auth.py -- OTP login and session endpoints.

Routes:
  POST /api/auth/send-otp     -- email a one-time code (public)
  POST /api/auth/verify-otp   -- check the code; set session + CSRF cookies (public)
  POST /api/auth/logout       -- clear both cookies; drop the caller's CSRF entry
  GET  /api/auth/me           -- current claims and live CSRF token (requires auth)

Security:
  Cache-Control: no-store on verify-otp responses -- they carry credentials.
  A wrong, expired, or unknown-email OTP is a 401 with a specific message;
  none of these paths touch the stored code.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.guards import AUTHENTICATED, RequestContext, guarded
from api.models import (
    MeResponse,
    MessageResponse,
    SendOtpRequest,
    SendOtpResponse,
    UserSummary,
    VerifyOtpRequest,
    VerifyOtpResponse,
)
from auth.dependencies import try_authenticate
from auth.otp import OtpService
from auth.session import SessionIssuer
from auth.tokens import clear_auth_cookies, set_csrf_cookie, set_session_cookie
from csrf.store import CsrfTokenStore

# Auth policy:
# - POST /api/auth/send-otp:    public -- starts the login flow
# - POST /api/auth/verify-otp:  public -- completes the login flow
# - POST /api/auth/logout:      public -- clearing cookies needs no prior auth
# - GET  /api/auth/me:          requires auth (AUTHENTICATED)
router = APIRouter()


@router.post("/auth/send-otp", response_model=SendOtpResponse)
def send_otp(request: Request, body: SendOtpRequest) -> SendOtpResponse:
    """Generate and email a one-time code for body.email.

    Succeeds even if the email could not be delivered: the code is stored
    and verifiable either way.
    """
    otp_service: OtpService = request.app.state.otp_service
    return SendOtpResponse(**otp_service.send_otp(body.email))


@router.post("/auth/verify-otp", response_model=VerifyOtpResponse)
def verify_otp(request: Request, body: VerifyOtpRequest) -> JSONResponse:
    """Verify the code, then set the session cookie and the first CSRF token.

    authToken: httpOnly, 7 days. csrfToken: readable by scripts, 10 minutes.
    The JSON body repeats the CSRF token (and the session token, for clients
    that prefer the Authorization header over cookies).
    """
    otp_service: OtpService = request.app.state.otp_service
    issuer: SessionIssuer = request.app.state.session_issuer

    user = otp_service.verify_otp(body.email, body.otp)
    session = issuer.issue(user)

    resp = JSONResponse(
        status_code=200,
        content=VerifyOtpResponse(
            message="OTP verified successfully",
            user=UserSummary(**session.user),
            role=session.role,
            csrf_token=session.csrf_token,
            token=session.token,
        ).model_dump(by_alias=True),
    )
    set_session_cookie(resp, session.token)
    set_csrf_cookie(resp, session.csrf_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Clear both cookies. If the request still carries a valid session, its
    CSRF token is invalidated as well so it cannot outlive the logout."""
    claims = try_authenticate(request)
    if claims is not None:
        csrf_store: CsrfTokenStore = request.app.state.csrf_store
        csrf_store.invalidate(claims.id)

    resp = JSONResponse(content=MessageResponse(message="Logged out successfully").model_dump())
    clear_auth_cookies(resp)
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, ctx: RequestContext = Depends(guarded(AUTHENTICATED))) -> MeResponse:
    """Return the caller's identity and their outstanding CSRF token, if any.

    Read-only: the token is peeked, not rotated, so a reloaded SPA can pick
    up where it left off while the token is still fresh.
    """
    csrf_store: CsrfTokenStore = request.app.state.csrf_store
    claims = ctx.user
    return MeResponse(
        user=UserSummary(id=claims.id, email=claims.email, role=claims.role),
        csrf_token=csrf_store.peek(claims.id),
    )
