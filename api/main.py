"""
api/main.py -- FastAPI application entry point for OTPGate.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. CORSMiddleware          -- credentialed CORS for the SPA origins
  2. security_headers        -- nosniff / frame-deny / no-referrer on every response
  3. log_requests            -- method, path, status, latency

Lifespan builds the process-wide services once (user store, CSRF store, OTP
service, session issuer) and hangs them on app.state; routes and guards read
them from there. It also owns the CSRF sweep task and tears everything down
symmetrically on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.user import router as user_router
from auth.otp import OtpService
from auth.session import SessionIssuer
from auth.store import UserStore
from auth.tokens import set_csrf_cookie
from core.config import get_settings
from core.errors import ServiceError
from csrf.guard import CSRF_HEADER
from csrf.store import CsrfTokenStore
from mail.sender import build_email_sender

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("otpgate.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background CSRF sweep
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval_seconds: int) -> None:
    """Drop expired CSRF entries every interval_seconds.

    Housekeeping only: expired tokens already fail validation on access.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        removed = app.state.csrf_store.purge_expired()
        if removed:
            logger.info("CSRF sweep removed %d expired tokens", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build services on startup; cancel the sweep and close the DB on shutdown.

    The CSRF store is created here, once per process, and injected through
    app.state -- never a module global -- so tests can swap it freely.
    """
    logger.info("OTPGate API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.csrf_store = CsrfTokenStore(ttl_seconds=_settings.csrf_token_ttl_seconds)
    app.state.otp_service = OtpService(
        app.state.user_store,
        build_email_sender(_settings),
        ttl_seconds=_settings.otp_ttl_seconds,
        length=_settings.otp_length,
        debug=_settings.debug,
    )
    app.state.session_issuer = SessionIssuer(app.state.csrf_store)
    logger.info("Services initialized (debug=%s)", _settings.debug)
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, _settings.csrf_sweep_interval_seconds))

    yield

    app.state.sweep_task.cancel()
    app.state.user_store.close()
    logger.info("OTPGate API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="OTPGate API",
    description="Email OTP login with cookie sessions, single-use CSRF tokens, and role-gated user management.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# @app.middleware("http") functions registered later wrap earlier ones;
# add_middleware() after them puts CORS outermost so preflight requests are
# answered before anything else runs.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    return response


app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", CSRF_HEADER],
    max_age=3600,
)

# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(user_router, prefix="/api", tags=["User"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(request: Request, status_code: int, code: str, message: str, detail: str | None = None):
    content = ErrorResponse(message=message, error=ErrorDetail(code=code, message=message, detail=detail)).model_dump()
    # A request that failed after the CSRF step has already spent its token;
    # hand back the replacement or the client is stuck until re-login.
    csrf_token = getattr(request.state, "csrf_token", None)
    if csrf_token:
        content["csrfToken"] = csrf_token
    response = JSONResponse(status_code=status_code, content=content)
    if csrf_token:
        set_csrf_cookie(response, csrf_token)
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map InvalidInput / Unauthorized / Forbidden / NotFound to 400 / 401 / 403 / 404."""
    if exc.status_code >= 403:
        logger.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return _error_response(request, exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the body, path, or query fails schema validation."""
    return _error_response(request, 400, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for framework-raised HTTP errors (404 route, 405 method)."""
    return _error_response(request, exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is logged, never written to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(request, 500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    db_ok = request.app.state.user_store.ping()
    return HealthResponse(version=__version__, components={"app": "ok", "database": "ok" if db_ok else "error"})
