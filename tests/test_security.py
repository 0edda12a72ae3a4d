"""
Tests for security headers and fault recovery middleware.
"""

import pytest
from httpx import AsyncClient

from forum.config import settings
from forum.errors import InternalFailure
from forum.main import app


@pytest.mark.asyncio
async def test_security_headers_present(client: AsyncClient):
    """Test that all required security headers are present in responses."""
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.headers.get("X-Content-Type-Options") == "nosniff"
    assert response.headers.get("X-Frame-Options") == "DENY"
    assert response.headers.get("X-XSS-Protection") == "1; mode=block"
    assert response.headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"
    assert "Content-Security-Policy" in response.headers
    assert "Permissions-Policy" in response.headers
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_security_headers_on_all_endpoints(client: AsyncClient):
    """Test that security headers are applied to all endpoints, redirects included."""
    for endpoint in ["/", "/health", "/metrics", "/users/me"]:
        response = await client.get(endpoint)

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


@pytest.mark.asyncio
async def test_hsts_header_not_in_dev(client: AsyncClient):
    """Test that HSTS header is not set outside production."""
    response = await client.get("/health")

    assert response.headers.get("Strict-Transport-Security") is None


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient):
    response = await client.get("/health", headers={"X-Request-ID": "trace-me"})

    assert response.headers["X-Request-ID"] == "trace-me"


@pytest.mark.asyncio
async def test_security_headers_on_error_responses(client: AsyncClient):
    response = await client.get("/nonexistent")

    assert response.status_code == 404
    assert response.headers.get("X-Content-Type-Options") == "nosniff"


@pytest.mark.asyncio
async def test_session_cookie_not_readable_by_scripts(client: AsyncClient, user_factory):
    await user_factory("alice", "alice@example.com")

    response = await client.post("/user/login", json={"email": "alice@example.com", "password": "password123"})

    assert "HttpOnly" in response.headers["set-cookie"]


@pytest.mark.asyncio
async def test_unexpected_fault_in_gate_becomes_generic_500(client: AsyncClient, forum_ctx, monkeypatch):
    """Test a crash while resolving the session yields a clean 500, not a dropped connection."""

    async def explode(token):
        raise RuntimeError("secret internal detail")

    monkeypatch.setattr(forum_ctx.sessions, "resolve_session", explode)

    response = await client.get("/users/me", headers={"Cookie": f"{settings.SESSION_COOKIE_NAME}=abc"})

    assert response.status_code == 500
    assert response.json() == {"error": "INTERNAL_ERROR", "message": "Internal Server Error"}
    assert "secret" not in response.text
    assert response.headers.get("X-Content-Type-Options") == "nosniff"


@pytest.mark.asyncio
async def test_store_failure_is_generic_500(client: AsyncClient, forum_ctx, monkeypatch):
    async def store_down(token):
        raise InternalFailure("session lookup failed")

    monkeypatch.setattr(forum_ctx.sessions, "resolve_session", store_down)

    response = await client.get("/post/view/1")

    assert response.status_code == 500
    assert response.json()["error"] == "INTERNAL_ERROR"
    assert "session lookup" not in response.text


@pytest.mark.asyncio
async def test_service_keeps_serving_after_fault(client: AsyncClient, forum_ctx, monkeypatch):
    async def explode(token):
        raise RuntimeError("boom")

    monkeypatch.setattr(forum_ctx.sessions, "resolve_session", explode)
    await client.get("/users/me", headers={"Cookie": f"{settings.SESSION_COOKIE_NAME}=abc"})
    monkeypatch.undo()

    response = await client.get("/health")

    assert response.status_code == 200


def test_recovery_wraps_every_other_middleware():
    """Test fault recovery sits outside the rest of the middleware stack."""
    layers = [
        getattr(m.kwargs.get("dispatch"), "__name__", m.cls.__name__) for m in app.user_middleware
    ]

    assert layers[:5] == [
        "recover_panic_middleware",
        "graceful_shutdown_middleware",
        "add_request_id_middleware",
        "request_logging_middleware",
        "security_headers_middleware",
    ]
    assert layers[5] == "CORSMiddleware"


@pytest.mark.asyncio
async def test_fault_in_outer_middleware_becomes_generic_500(client: AsyncClient, monkeypatch):
    """Test a crash in a middleware layer, outside the router, still yields a clean 500."""

    def explode():
        raise RuntimeError("secret internal detail")

    monkeypatch.setattr("forum.middleware.uuid.uuid4", explode)

    response = await client.get("/health")

    assert response.status_code == 500
    assert response.json() == {"error": "INTERNAL_ERROR", "message": "Internal Server Error"}
    assert "secret" not in response.text
    assert response.headers.get("X-Content-Type-Options") == "nosniff"
