"""
api/routes/admin.py -- User administration (admin role only).

Routes:
  GET    /api/admin/dashboard           -- account statistics
  GET    /api/admin/users?page&limit    -- paginated account listing
  PUT    /api/admin/users/{id}/role     -- change a role (CSRF)
  DELETE /api/admin/users/{id}          -- delete an account (CSRF)

Guards:
  Every route requires role admin. Mutations also consume and rotate the
  CSRF token; the replacement is returned as csrfToken.

Invariants kept here:
  - The last admin cannot be demoted (UserStore.set_role checks and writes in
    one statement, so racing demotions cannot both pass), and an admin cannot
    delete their own account, so the system always keeps at least one admin.
  - Deleting an account also drops its CSRF entry.
  - Unknown ids are a 404, never a silent success.
"""

from __future__ import annotations

import logging
import math

from fastapi import APIRouter, Depends, Query, Request, Response

from api.guards import ADMIN_READ, ADMIN_WRITE, RequestContext, attach_csrf, guarded
from api.models import (
    DashboardResponse,
    DashboardStats,
    Pagination,
    ProfileUpdateResponse,
    RoleUpdateRequest,
    UserListResponse,
    UserOut,
)
from auth.models import ROLES
from auth.store import UserStore, db_errors
from core.errors import InvalidInput, NotFound
from csrf.store import CsrfTokenStore

logger = logging.getLogger("otpgate.api")

# Auth policy:
# - GET    /api/admin/dashboard:        role admin (ADMIN_READ)
# - GET    /api/admin/users:            role admin (ADMIN_READ)
# - PUT    /api/admin/users/{id}/role:  role admin + CSRF (ADMIN_WRITE)
# - DELETE /api/admin/users/{id}:       role admin + CSRF (ADMIN_WRITE)
router = APIRouter()

_RECENT_USERS = 10


@router.get("/admin/dashboard", response_model=DashboardResponse)
def get_dashboard(request: Request, ctx: RequestContext = Depends(guarded(ADMIN_READ))) -> DashboardResponse:
    """Return totals plus the ten most recently created accounts."""
    user_store: UserStore = request.app.state.user_store
    with db_errors("Failed to fetch dashboard statistics"):
        stats = DashboardStats(
            total_users=user_store.count_users(),
            verified_users=user_store.count_verified(),
            admin_users=user_store.count_admins(),
            recent_users=[UserOut.from_user(u) for u in user_store.recent_users(_RECENT_USERS)],
        )
    return DashboardResponse(stats=stats)


@router.get("/admin/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    ctx: RequestContext = Depends(guarded(ADMIN_READ)),
) -> UserListResponse:
    """Return one page of accounts, newest first."""
    user_store: UserStore = request.app.state.user_store
    with db_errors("Failed to fetch users"):
        total = user_store.count_users()
        users = user_store.list_users(limit=limit, offset=(page - 1) * limit)
    return UserListResponse(
        data=[UserOut.from_user(u) for u in users],
        pagination=Pagination(page=page, limit=limit, total=total, pages=math.ceil(total / limit)),
    )


@router.put("/admin/users/{user_id}/role", response_model=ProfileUpdateResponse)
def update_user_role(
    request: Request,
    response: Response,
    user_id: int,
    body: RoleUpdateRequest,
    ctx: RequestContext = Depends(guarded(ADMIN_WRITE)),
) -> ProfileUpdateResponse:
    """Set a user's role to "user" or "admin".

    The target's existing session keeps its old role claim until it logs in
    again; tokens are not revocable.
    """
    user_store: UserStore = request.app.state.user_store
    csrf_token = attach_csrf(ctx, response)

    if body.role not in ROLES:
        raise InvalidInput("Invalid role")

    with db_errors("Failed to update user role"):
        updated = user_store.set_role(user_id, body.role)
    if updated is None:
        raise NotFound("User not found")

    logger.info("Admin %s set role of user %s to %s", ctx.user.id, user_id, body.role)
    return ProfileUpdateResponse(
        message=f"User role updated to {body.role}",
        user=UserOut.from_user(updated),
        csrf_token=csrf_token,
    )


@router.delete("/admin/users/{user_id}", response_model=ProfileUpdateResponse)
def delete_user(
    request: Request,
    response: Response,
    user_id: int,
    ctx: RequestContext = Depends(guarded(ADMIN_WRITE)),
) -> ProfileUpdateResponse:
    """Permanently delete an account and drop its CSRF token."""
    user_store: UserStore = request.app.state.user_store
    csrf_store: CsrfTokenStore = request.app.state.csrf_store
    csrf_token = attach_csrf(ctx, response)

    if user_id == ctx.user.id:
        raise InvalidInput("You cannot delete your own account")

    with db_errors("Failed to delete user"):
        deleted = user_store.delete_user(user_id)
    if deleted is None:
        raise NotFound("User not found")
    csrf_store.invalidate(user_id)

    logger.info("Admin %s deleted user %s", ctx.user.id, user_id)
    return ProfileUpdateResponse(
        message="User deleted successfully",
        user=UserOut.from_user(deleted),
        csrf_token=csrf_token,
    )
