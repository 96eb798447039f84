"""
tests/test_health.py -- Integration tests for GET /api/health and the app-wide middleware.

Covers:
  - 200 response with status, version, and components fields
  - No authentication required
  - Security headers on every response
  - Framework 404s use the standard error envelope
"""

from __future__ import annotations


def test_health_returns_200_with_components(env):
    """Health endpoint returns 200 with status, version, and components."""
    resp = env.client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(env):
    """Health endpoint is accessible without any authentication headers."""
    env.client.cookies.clear()
    resp = env.client.get("/api/health", headers={})
    assert resp.status_code == 200


def test_security_headers_present(env):
    resp = env.client.get("/api/health")
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["x-frame-options"] == "DENY"
    assert resp.headers["referrer-policy"] == "no-referrer"


def test_unknown_route_uses_error_envelope(env):
    resp = env.client.get("/api/does-not-exist")
    assert resp.status_code == 404
    data = resp.json()
    assert data["success"] is False
    assert data["error"]["code"] == "http_404"


def test_cors_preflight_allows_csrf_header(env):
    resp = env.client.options(
        "/api/user/profile",
        headers={
            "Origin": "http://localhost:5173",
            "Access-Control-Request-Method": "PUT",
            "Access-Control-Request-Headers": "X-CSRF-Token",
        },
    )
    assert resp.status_code == 200
    assert resp.headers["access-control-allow-origin"] == "http://localhost:5173"
    assert resp.headers["access-control-allow-credentials"] == "true"
