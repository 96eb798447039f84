"""
API request and response models for OTPGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field naming: user records keep the snake_case column names the SPA already
consumes (is_verified, created_at); envelope fields the SPA reads by name
(csrfToken, totalUsers, ...) are camelCase on the wire via aliases.
populate_by_name lets handlers construct them with snake_case names.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SendOtpRequest(BaseModel):
    """Body of POST /api/auth/send-otp.

    The email is a plain string on purpose: the "@" check lives in the OTP
    service so a malformed address is a 400 invalid_input, like every other
    input error the service raises.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)


class VerifyOtpRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)
    otp: str = Field(max_length=12)


class ProfileUpdateRequest(BaseModel):
    """Body of PUT /api/user/profile. Only fields present in the body are written."""

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=30)


class EmailUpdateRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)


class RoleUpdateRequest(BaseModel):
    # Validated against auth.models.ROLES in the handler so an unknown role is
    # a 400 invalid_input with the standard message, not a schema error.
    role: str = Field(max_length=20)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    id: int
    email: str
    role: str
    is_verified: bool
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(**user.public_dict())


class UserSummary(BaseModel):
    id: int
    email: str
    role: str


class SendOtpResponse(BaseModel):
    success: bool = True
    message: str
    email: str


class VerifyOtpResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    user: UserSummary
    role: str
    csrf_token: str = Field(alias="csrfToken")
    token: str


class MessageResponse(BaseModel):
    success: bool = True
    message: str


class MeResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    user: UserSummary
    csrf_token: Optional[str] = Field(default=None, alias="csrfToken")


class ProfileResponse(BaseModel):
    success: bool = True
    user: UserOut


class ProfileUpdateResponse(BaseModel):
    """Returned by every CSRF-protected mutation: carries the rotated token."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    message: str
    user: Optional[UserOut] = None
    csrf_token: Optional[str] = Field(default=None, alias="csrfToken")


class DashboardStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_users: int = Field(alias="totalUsers")
    verified_users: int = Field(alias="verifiedUsers")
    admin_users: int = Field(alias="adminUsers")
    recent_users: list[UserOut] = Field(alias="recentUsers")


class DashboardResponse(BaseModel):
    success: bool = True
    stats: DashboardStats


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class UserListResponse(BaseModel):
    success: bool = True
    data: list[UserOut]
    pagination: Pagination


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope for every non-2xx response."""

    success: bool = False
    message: str
    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
