#!/usr/bin/env python3
"""
Integration Tests for System Endpoints
Tests for root, health check and metrics endpoints
"""

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import timeline_backend.db.session as session_module
from timeline_backend.core.config import settings


@pytest.mark.integration
class TestRootEndpoint:
    """Test root endpoint (/)"""

    @pytest.mark.asyncio
    async def test_root_returns_info(self, client: AsyncClient):
        """Test root endpoint returns service info without auth"""
        response = await client.get("/")

        assert response.status_code == 200
        result = response.json()
        assert result["name"] == settings.APP_NAME
        assert result["version"] == settings.APP_VERSION

    @pytest.mark.asyncio
    async def test_root_accepts_get_only(self, client: AsyncClient):
        """Test root endpoint only accepts GET requests"""
        response = await client.post("/")
        assert response.status_code == 405


@pytest.mark.integration
class TestHealthEndpoint:
    """Test health check endpoint (/health)"""

    @pytest.mark.asyncio
    async def test_healthy_with_database(self, client: AsyncClient, db_engine, monkeypatch):
        """Test health reports healthy when the database answers"""
        monkeypatch.setattr(
            session_module,
            "async_session_maker",
            async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False),
        )

        response = await client.get("/health")

        assert response.status_code == 200
        result = response.json()
        assert result["status"] == "healthy"
        assert result["services"] == {"postgres": "healthy"}

    @pytest.mark.asyncio
    async def test_degraded_without_database(self, client: AsyncClient, monkeypatch):
        """Test health reports degraded when the database is not initialized"""
        monkeypatch.setattr(session_module, "async_session_maker", None)

        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"


@pytest.mark.integration
class TestMetricsEndpoint:
    """Test Prometheus metrics endpoint (/metrics)"""

    @pytest.mark.asyncio
    async def test_metrics_exposed(self, client: AsyncClient, make_user, make_node, auth_headers):
        """Test permission metrics appear after a check"""
        await make_user(1)
        node = await make_node(1)
        await client.get(f"/api/v1/nodes/{node.id}/access", headers=auth_headers(1))

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "text/plain" in response.headers["content-type"]
        assert "permission_checks_total" in response.text
        assert "permission_operation_duration_seconds" in response.text

    @pytest.mark.asyncio
    async def test_metrics_disabled(self, client: AsyncClient, monkeypatch):
        """Test metrics endpoint hidden when disabled"""
        monkeypatch.setattr(settings, "ENABLE_METRICS", False)

        response = await client.get("/metrics")

        assert response.status_code == 404
