"""Health endpoint tests."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_version(client: AsyncClient) -> None:
    """GET /version returns version and environment."""
    response = await client.get("/version")
    assert response.status_code == 200
    data = response.json()
    assert "version" in data
    assert "environment" in data


@pytest.mark.asyncio
async def test_request_id_is_echoed(client: AsyncClient) -> None:
    """X-Request-Id from the caller comes back on the response."""
    response = await client.get("/health", headers={"X-Request-Id": "req-123"})
    assert response.headers["X-Request-Id"] == "req-123"


class _FakeSession:
    async def scalar(self, *args, **kwargs):
        return 3


@pytest.mark.asyncio
async def test_ready_without_redis(app, client: AsyncClient) -> None:
    """GET /ready passes with the store reachable and notifications disabled."""
    from guildmark.database import get_session

    async def _session():
        yield _FakeSession()

    app.dependency_overrides[get_session] = _session
    response = await client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["visible_templates"] == 3
    assert data["checks"]["notifications"] == "disabled"
