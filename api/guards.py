"""
api/guards.py -- Per-route guard pipeline.

Every protected route declares a RoutePolicy: which roles may call it and
whether it mutates state (and therefore needs a CSRF token). guarded(policy)
turns the record into a FastAPI dependency that runs the steps in PIPELINE,
in order, over one RequestContext:

    authenticate -> check role -> CSRF (mutating routes only)

The first failing step raises and nothing after it runs -- in particular the
handler body never executes, so a rejected request mutates nothing.

The context is returned to the handler, which reads the caller's claims from
it and, for mutating routes, the rotated CSRF token to send back. The token
is also mirrored on request.state so error responses can return it too: the
old token is already spent once the CSRF step has passed.

Ordering against body parsing:
  FastAPI decodes a JSON request body before it solves any dependency. A
  body that is not valid JSON is therefore rejected with 400
  validation_error before the pipeline runs, whoever the caller is. Nothing
  has been read from the session or the CSRF store at that point, and the
  handler never runs. Once the body decodes, the pipeline runs before the
  body is checked against the route's schema, so a well-formed request
  without a session gets 401 even when its fields are wrong.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Request, Response

from auth.dependencies import authenticate, check_role
from auth.models import ROLE_ADMIN, ROLE_USER, SessionClaims
from auth.tokens import set_csrf_cookie
from csrf.guard import enforce_csrf


@dataclass(frozen=True)
class RoutePolicy:
    roles: tuple[str, ...] = ()  # empty = any authenticated user
    csrf: bool = False


@dataclass
class RequestContext:
    request: Request
    policy: RoutePolicy
    claims: SessionClaims | None = None
    csrf_token: str | None = None  # replacement token minted by the CSRF step

    @property
    def user(self) -> SessionClaims:
        if self.claims is None:
            raise RuntimeError("RequestContext.user read before authentication")
        return self.claims


GuardStep = Callable[[RequestContext], Awaitable[None]]


async def _authenticate(ctx: RequestContext) -> None:
    ctx.claims = authenticate(ctx.request)
    ctx.request.state.user = ctx.claims


async def _check_role(ctx: RequestContext) -> None:
    check_role(ctx.user, ctx.policy.roles)


async def _check_csrf(ctx: RequestContext) -> None:
    if not ctx.policy.csrf:
        return
    store = ctx.request.app.state.csrf_store
    user_id = ctx.claims.id if ctx.claims is not None else None
    new_token = await enforce_csrf(ctx.request, store, user_id)
    if new_token is not None:
        ctx.csrf_token = new_token
        ctx.request.state.csrf_token = new_token


PIPELINE: tuple[GuardStep, ...] = (_authenticate, _check_role, _check_csrf)


def guarded(policy: RoutePolicy) -> Callable[[Request], Awaitable[RequestContext]]:
    """Build the dependency enforcing policy.

    Usage:
        @router.put("/user/profile")
        def update(ctx: RequestContext = Depends(guarded(USER_WRITE))): ...
    """

    async def run_pipeline(request: Request) -> RequestContext:
        ctx = RequestContext(request=request, policy=policy)
        for step in PIPELINE:
            await step(ctx)
        return ctx

    return run_pipeline


def attach_csrf(ctx: RequestContext, response: Response) -> str | None:
    """Refresh the csrfToken cookie with the rotated token; returns the token."""
    if ctx.csrf_token is not None:
        set_csrf_cookie(response, ctx.csrf_token)
    return ctx.csrf_token


# ---------------------------------------------------------------------------
# Route policies
# ---------------------------------------------------------------------------

AUTHENTICATED = RoutePolicy()
AUTHENTICATED_WRITE = RoutePolicy(csrf=True)
USER_READ = RoutePolicy(roles=(ROLE_USER,))
USER_WRITE = RoutePolicy(roles=(ROLE_USER,), csrf=True)
ADMIN_READ = RoutePolicy(roles=(ROLE_ADMIN,))
ADMIN_WRITE = RoutePolicy(roles=(ROLE_ADMIN,), csrf=True)
