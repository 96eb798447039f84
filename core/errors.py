"""
core/errors.py -- Service-layer error taxonomy.

Every failure a caller can trigger is one of these classes. Each carries the
HTTP status and the stable error code the API renders, so stores, services,
and guards raise domain errors and only api/main.py knows about responses.

  InvalidInput   400  malformed email, invalid role, persistence failure
  Unauthorized   401  missing/invalid/expired credential, wrong/expired OTP
  Forbidden      403  CSRF failure, insufficient role
  NotFound       404  admin operation on an unknown user id

Layer rule: core/ is the kernel -- stdlib only, no project imports.
"""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors mapped to HTTP responses."""

    status_code: int = 400
    code: str = "invalid_input"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInput(ServiceError):
    status_code = 400
    code = "invalid_input"


class Unauthorized(ServiceError):
    status_code = 401
    code = "unauthorized"


class Forbidden(ServiceError):
    status_code = 403
    code = "forbidden"


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"
