import secrets

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from gatekeeper.config import Settings
from gatekeeper.container import Services
from gatekeeper.core.middleware import API_KEY_REQUIRED_MESSAGE
from gatekeeper.main import create_app


@pytest.mark.asyncio
async def test_request_id_in_response(client: AsyncClient):
    """All responses include X-Request-ID header."""
    response = await client.get("/health")
    assert response.status_code == 200
    # UUID format: 8-4-4-4-12
    assert len(response.headers["X-Request-ID"]) == 36


@pytest.mark.asyncio
async def test_404_returns_structured_json(client: AsyncClient):
    """Non-existent endpoint returns structured JSON error with request_id."""
    response = await client.get("/nonexistent")
    assert response.status_code == 404
    data = response.json()
    assert data["success"] is False
    assert data["status_code"] == 404
    assert data["request_id"] == response.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_rate_limit_headers_on_success(client: AsyncClient):
    response = await client.get("/health")
    assert response.headers["X-RateLimit-Limit-Minute"] == "60"
    assert response.headers["X-RateLimit-Limit-Hour"] == "1000"
    assert response.headers["X-RateLimit-Remaining-Minute"] == "59"
    assert response.headers["X-RateLimit-Remaining-Hour"] == "999"
    assert "Retry-After" not in response.headers


@pytest.mark.asyncio
async def test_protected_path_without_credentials(client: AsyncClient):
    response = await client.get("/api/user/me")
    assert response.status_code == 401
    data = response.json()
    assert data["success"] is False
    assert data["message"] == API_KEY_REQUIRED_MESSAGE
    # Denials by auth still carry the rate limit state
    assert "X-RateLimit-Remaining-Minute" in response.headers


@pytest.mark.asyncio
async def test_invalid_bearer_is_rejected(client: AsyncClient):
    response = await client.get(
        "/api/user/me", headers={"Authorization": "Bearer agp_live_nope"}
    )
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or expired credentials"


@pytest.mark.asyncio
async def test_malformed_authorization_is_rejected(client: AsyncClient):
    response = await client.get("/api/user/me", headers={"Authorization": "Basic Zm9vOmJhcg=="})
    assert response.status_code == 401
    assert response.json()["message"] == "Invalid or malformed credentials"


@pytest.mark.asyncio
async def test_invalid_credential_ignored_on_exempt_path(client: AsyncClient):
    response = await client.get("/health", headers={"X-API-Key": "agp_live_nope"})
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_unprotected_path_allows_anonymous(client: AsyncClient):
    response = await client.get("/docs-not-here")
    # Reaches routing (404), not the gateway's 401
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_valid_api_key_reaches_protected_path(client: AsyncClient, services: Services):
    async with services.session_factory() as db:
        raw_key, _ = await services.keys.create_key(db, name="ci-key")
        await db.commit()

    response = await client.get("/api/user/me", headers={"X-API-Key": raw_key})
    # An ownerless key is authenticated but has no user behind it
    assert response.status_code == 401
    assert response.json()["message"] == "Authorization token required"

    response = await client.get("/api/admin/health", headers={"Authorization": f"Bearer {raw_key}"})
    assert response.status_code == 401
    assert response.json()["message"] == "Valid session required"


@pytest.mark.asyncio
async def test_too_many_requests(client_factory):
    client, _ = await client_factory(rate_limit_per_minute=3)
    async with client:
        for _ in range(3):
            assert (await client.get("/health")).status_code == 200
        response = await client.get("/health")

    assert response.status_code == 429
    data = response.json()
    assert data["success"] is False
    assert data["message"] == "Rate limit exceeded. Maximum 3 requests per minute allowed."
    assert data["retryAfter"] == 60
    assert response.headers["Retry-After"] == "60"
    assert response.headers["X-RateLimit-Remaining-Minute"] == "0"
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_rejected_keys_are_limited_apart_from_the_address(client_factory):
    client, _ = await client_factory(rate_limit_per_minute=2)
    async with client:
        for _ in range(2):
            response = await client.get("/api/user/me", headers={"X-API-Key": "agp_live_bad"})
            assert response.status_code == 401
        limited = await client.get("/api/user/me", headers={"X-API-Key": "agp_live_bad"})
        anonymous = await client.get("/health")

    assert limited.status_code == 429
    assert anonymous.status_code == 200


@pytest.mark.asyncio
async def test_rotating_bad_bearers_on_exempt_path_share_the_address_limit(client_factory):
    client, _ = await client_factory(rate_limit_per_minute=2)
    async with client:
        responses = [
            await client.get(
                "/health", headers={"Authorization": f"Bearer {secrets.token_hex(16)}"}
            )
            for _ in range(3)
        ]

    assert [r.status_code for r in responses] == [200, 200, 429]
    assert responses[2].json()["retryAfter"] > 0


@pytest.mark.asyncio
async def test_forwarded_for_only_when_trusted(client_factory):
    client, _ = await client_factory(rate_limit_per_minute=1, trust_forwarded_for=True)
    async with client:
        first = await client.get("/health", headers={"X-Forwarded-For": "203.0.113.1"})
        second = await client.get("/health", headers={"X-Forwarded-For": "203.0.113.2"})
    assert first.status_code == 200
    assert second.status_code == 200

    client, _ = await client_factory(rate_limit_per_minute=1)
    async with client:
        first = await client.get("/health", headers={"X-Forwarded-For": "203.0.113.1"})
        second = await client.get("/health", headers={"X-Forwarded-For": "203.0.113.2"})
    assert first.status_code == 200
    assert second.status_code == 429


@pytest.mark.asyncio
async def test_rate_limiting_can_be_disabled(client_factory):
    client, _ = await client_factory(rate_limit_enabled=False, rate_limit_per_minute=1)
    async with client:
        for _ in range(3):
            response = await client.get("/health")
            assert response.status_code == 200
    assert "X-RateLimit-Limit-Minute" not in response.headers


@pytest.mark.asyncio
async def test_store_failure_returns_503(client_factory, monkeypatch):
    client, services = await client_factory()

    async def _broken(db, creds):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(services.authenticator, "authenticate", _broken)
    async with client:
        response = await client.get("/api/user/me", headers={"X-API-Key": "agp_live_x"})

    assert response.status_code == 503
    assert response.json()["message"] == "Authentication service unavailable"


@pytest.mark.asyncio
async def test_unhandled_error_keeps_rate_limit_headers(settings: Settings, services: Services):
    app = create_app(settings)
    app.state.services = services

    @app.get("/explode")
    async def explode():
        raise RuntimeError("boom")

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/explode")

    assert response.status_code == 500
    data = response.json()
    assert data["message"] == "Internal server error"
    assert "boom" not in response.text
    assert data["request_id"] == response.headers["X-Request-ID"]
    assert response.headers["X-RateLimit-Limit-Minute"] == "60"
    assert response.headers["X-RateLimit-Remaining-Minute"] == "59"


@pytest.mark.asyncio
async def test_empty_protected_list_protects_everything(client_factory):
    client, _ = await client_factory(api_key_protected_paths="")
    async with client:
        health = await client.get("/health")
        other = await client.get("/anything")
    # /health stays reachable through the exempt list
    assert health.status_code == 200
    assert other.status_code == 401
