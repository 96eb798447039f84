"""
tests/conftest.py -- Shared test fixtures for OTPGate integration tests.

This module provides:
  - RecordingSender: an EmailSender test double that remembers every code
  - _make_test_services(): isolated in-memory user DB + CSRF store + services
  - _patch_lifespan(): wires test services into app.state, bypassing real startup
  - env: a fresh app environment per test (client, stores, sender)
  - login(): drives send-otp -> verify-otp through the API and returns the CSRF token

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
Each test gets its own DB name, so tests never see each other's rows or the
cookies another test's client collected.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import ROLE_ADMIN, User
from auth.otp import OtpService
from auth.session import SessionIssuer
from auth.store import UserStore
from csrf.store import CsrfTokenStore
from mail.sender import EmailDeliveryError

# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


@dataclass
class RecordingSender:
    """EmailSender that records (email, code) pairs; fails on demand."""

    sent: list[tuple[str, str]] = field(default_factory=list)
    fail: bool = False

    def send_otp(self, email: str, code: str) -> None:
        if self.fail:
            raise EmailDeliveryError("SMTP unavailable")
        self.sent.append((email, code))

    def last_code_for(self, email: str) -> str:
        return [code for to, code in self.sent if to == email][-1]


@dataclass
class AppEnv:
    client: TestClient
    user_store: UserStore
    csrf_store: CsrfTokenStore
    sender: RecordingSender


# ---------------------------------------------------------------------------
# Service helpers
# ---------------------------------------------------------------------------


def _make_test_services() -> tuple[UserStore, CsrfTokenStore, RecordingSender]:
    db_url = f"sqlite:///file:test_otpgate_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url), CsrfTokenStore(ttl_seconds=600), RecordingSender()


def _patch_lifespan(user_store: UserStore, csrf_store: CsrfTokenStore, sender: RecordingSender):
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.csrf_store = csrf_store
        app.state.otp_service = OtpService(user_store, sender, ttl_seconds=600, length=6)
        app.state.session_issuer = SessionIssuer(csrf_store)
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def env() -> Generator[AppEnv, None, None]:
    """Yield a AppEnv backed by a private in-memory database.

    The TestClient uses the real FastAPI app with a patched lifespan, so
    tests hit real middleware, guards, and handlers.
    """
    user_store, csrf_store, sender = _make_test_services()
    app.router.lifespan_context = _patch_lifespan(user_store, csrf_store, sender)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield AppEnv(client=client, user_store=user_store, csrf_store=csrf_store, sender=sender)

    user_store.close()


def login(env: AppEnv, email: str) -> str:
    """Log email in through the API. Cookies land in env.client; returns the CSRF token."""
    resp = env.client.post("/api/auth/send-otp", json={"email": email})
    assert resp.status_code == 200, resp.text
    code = env.sender.last_code_for(email)
    resp = env.client.post("/api/auth/verify-otp", json={"email": email, "otp": code})
    assert resp.status_code == 200, resp.text
    return resp.json()["csrfToken"]


def make_admin(env: AppEnv, email: str = "admin@example.com") -> int:
    """Create a verified admin row directly in the store; returns its id."""
    return env.user_store.create_user(User(email=email, role=ROLE_ADMIN, is_verified=True))
