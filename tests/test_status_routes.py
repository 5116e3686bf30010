"""
Tests for Status API Routes.

Tests health check endpoints and provider status checks.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from sections_stack.api import status_routes
from sections_stack.api.status_routes import (
    ProviderStatus,
    StatusLevel,
    calculate_overall_status,
    check_schema,
    check_shopify,
)
from sections_stack.db.migration_runner import MigrationStatus


def _provider(level: StatusLevel) -> ProviderStatus:
    return ProviderStatus(status=level, latency_ms=10, last_check=datetime.now(UTC).isoformat())


@pytest.fixture(autouse=True)
def clear_status_cache():
    status_routes._status_cache.clear()
    yield
    status_routes._status_cache.clear()


class TestCalculateOverallStatus:
    """Tests for calculate_overall_status function."""

    def test_all_operational(self):
        providers = {"db": _provider(StatusLevel.OPERATIONAL), "shopify": _provider(StatusLevel.OPERATIONAL)}
        assert calculate_overall_status(providers) == StatusLevel.OPERATIONAL

    def test_one_degraded(self):
        providers = {"db": _provider(StatusLevel.OPERATIONAL), "shopify": _provider(StatusLevel.DEGRADED)}
        assert calculate_overall_status(providers) == StatusLevel.DEGRADED

    def test_outage_wins(self):
        providers = {"db": _provider(StatusLevel.OUTAGE), "shopify": _provider(StatusLevel.DEGRADED)}
        assert calculate_overall_status(providers) == StatusLevel.OUTAGE


class TestCheckShopify:
    """Shopify status page check against a mock transport."""

    @staticmethod
    def _patch_transport(monkeypatch, handler):
        real_client = httpx.AsyncClient

        def factory(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(handler)
            return real_client(*args, **kwargs)

        monkeypatch.setattr("sections_stack.api.status_routes.httpx.AsyncClient", factory)

    async def test_operational(self, monkeypatch):
        self._patch_transport(
            monkeypatch, lambda request: httpx.Response(200, json={"status": {"indicator": "none"}})
        )

        result = await check_shopify()

        assert result.status == StatusLevel.OPERATIONAL
        assert result.latency_ms is not None

    @pytest.mark.parametrize(
        "indicator,expected",
        [("minor", StatusLevel.DEGRADED), ("major", StatusLevel.OUTAGE), ("critical", StatusLevel.OUTAGE)],
    )
    async def test_incident_indicator(self, monkeypatch, indicator: str, expected: StatusLevel):
        self._patch_transport(
            monkeypatch, lambda request: httpx.Response(200, json={"status": {"indicator": indicator}})
        )

        result = await check_shopify()

        assert result.status == expected
        assert indicator in result.message

    async def test_unexpected_status_code(self, monkeypatch):
        self._patch_transport(monkeypatch, lambda request: httpx.Response(500))

        result = await check_shopify()

        assert result.status == StatusLevel.DEGRADED

    async def test_timeout(self, monkeypatch):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        self._patch_transport(monkeypatch, handler)

        result = await check_shopify()

        assert result.status == StatusLevel.OUTAGE
        assert result.message == "Timeout"

    async def test_connection_failure(self, monkeypatch):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        self._patch_transport(monkeypatch, handler)

        result = await check_shopify()

        assert result.status == StatusLevel.OUTAGE
        assert result.message == "Connection failed"


class TestCheckSchema:
    async def test_up_to_date(self):
        current = MigrationStatus(current_revision="2026_10_19_0000", head_revision="2026_10_19_0000")
        with patch("sections_stack.api.status_routes.check_migrations_status", return_value=current):
            result = await check_schema()

        assert result.status == StatusLevel.OPERATIONAL

    async def test_pending_migrations(self):
        behind = MigrationStatus(current_revision=None, head_revision="2026_10_19_0000")
        with patch("sections_stack.api.status_routes.check_migrations_status", return_value=behind):
            result = await check_schema()

        assert result.status == StatusLevel.DEGRADED
        assert "2026_10_19_0000" in result.message

    async def test_unreachable(self):
        with patch(
            "sections_stack.api.status_routes.check_migrations_status",
            side_effect=OperationalError("SELECT", {}, Exception("refused")),
        ):
            result = await check_schema()

        assert result.status == StatusLevel.OUTAGE


class TestHealthEndpoint:
    def test_healthy(self, client: TestClient, override_db: AsyncMock):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["database"] == "connected"

    def test_database_down(self, client: TestClient, override_db: AsyncMock):
        override_db.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("down")))

        response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["detail"]["database"] == "disconnected"


class TestStatusEndpoint:
    def _patch_checks(self, postgresql: StatusLevel, schema: StatusLevel, shopify: StatusLevel):
        return (
            patch.object(status_routes, "check_postgresql", AsyncMock(return_value=_provider(postgresql))),
            patch.object(status_routes, "check_schema", AsyncMock(return_value=_provider(schema))),
            patch.object(status_routes, "check_shopify", AsyncMock(return_value=_provider(shopify))),
        )

    def test_aggregates_providers(self, client: TestClient):
        pg, schema, shopify = self._patch_checks(
            StatusLevel.OPERATIONAL, StatusLevel.DEGRADED, StatusLevel.OPERATIONAL
        )
        with pg, schema, shopify:
            response = client.get("/v1/status")

        body = response.json()
        assert response.status_code == 200
        assert body["service"] == "sections-stack"
        assert body["status"] == "degraded"
        assert set(body["providers"]) == {"postgresql", "schema", "shopify"}

    def test_response_is_cached(self, client: TestClient):
        pg, schema, shopify = self._patch_checks(
            StatusLevel.OPERATIONAL, StatusLevel.OPERATIONAL, StatusLevel.OPERATIONAL
        )
        with pg as mock_pg, schema, shopify:
            client.get("/v1/status")
            client.get("/v1/status")

        assert mock_pg.await_count == 1


class TestMetricsEndpoint:
    def test_exposes_prometheus_text(self, client: TestClient):
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text

    def test_disabled(self, client: TestClient, monkeypatch):
        monkeypatch.setattr(status_routes.settings, "metrics_enabled", False)

        response = client.get("/metrics")

        assert response.status_code == 404
