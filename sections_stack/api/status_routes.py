"""
Status API routes - Health checks for Sections Stack dependencies.

Public endpoints (no auth). /v1/status is cached for 10 seconds so repeated
polling cannot hammer PostgreSQL or Shopify.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sections_stack.config import settings
from sections_stack.db.migration_runner import check_migrations_status
from sections_stack.db.session import get_read_db, get_read_session
from sections_stack.models.api import HealthResponse
from sections_stack.observability.logging import get_logger
from sections_stack.observability.metrics import get_metrics_handler

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

CHECK_TIMEOUT = 5.0  # seconds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms
SHOPIFY_STATUS_URL = "https://www.shopifystatus.com/api/v2/status.json"

_status_cache: dict[str, tuple[datetime, "ServiceStatusResponse"]] = {}
_CACHE_TTL_SECONDS = 10


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class ProviderStatus(BaseModel):
    """Status of a single dependency."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status endpoint."""

    service: str = "sections-stack"
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


def _latency_status(latency_ms: int) -> StatusLevel:
    if latency_ms > DEGRADED_LATENCY_THRESHOLD:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


async def check_postgresql() -> ProviderStatus:
    """Check PostgreSQL connectivity."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with get_read_session() as db:
            await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("postgresql_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            last_check=timestamp,
            message="Connection failed",
        )

    latency_ms = int((time.perf_counter() - start) * 1000)
    level = _latency_status(latency_ms)
    return ProviderStatus(
        status=level,
        latency_ms=latency_ms,
        last_check=timestamp,
        message="High latency" if level == StatusLevel.DEGRADED else None,
    )


async def check_schema() -> ProviderStatus:
    """Check that the schema is at the newest migration."""
    timestamp = datetime.now(UTC).isoformat()
    try:
        migration_status = await asyncio.to_thread(check_migrations_status)
    except (SQLAlchemyError, OSError) as e:
        logger.warning("schema_check_failed", error=str(e))
        return ProviderStatus(status=StatusLevel.OUTAGE, last_check=timestamp, message="Check failed")

    if migration_status.pending:
        return ProviderStatus(
            status=StatusLevel.DEGRADED,
            last_check=timestamp,
            message=(
                f"Schema at {migration_status.current_revision}, "
                f"head is {migration_status.head_revision}"
            ),
        )
    return ProviderStatus(status=StatusLevel.OPERATIONAL, last_check=timestamp)


async def check_shopify() -> ProviderStatus:
    """Check Shopify platform status (public status page API)."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    try:
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT) as client:
            response = await client.get(SHOPIFY_STATUS_URL)
    except httpx.TimeoutException:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(CHECK_TIMEOUT * 1000),
            last_check=timestamp,
            message="Timeout",
        )
    except httpx.HTTPError as e:
        logger.warning("shopify_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            last_check=timestamp,
            message="Connection failed",
        )

    latency_ms = int((time.perf_counter() - start) * 1000)
    if response.status_code != 200:
        return ProviderStatus(
            status=StatusLevel.DEGRADED,
            latency_ms=latency_ms,
            last_check=timestamp,
            message=f"Unexpected status: {response.status_code}",
        )

    try:
        indicator = response.json().get("status", {}).get("indicator", "none")
    except (ValueError, AttributeError):
        indicator = "unknown"

    if indicator in ("major", "critical"):
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=latency_ms,
            last_check=timestamp,
            message=f"Shopify reports {indicator} incident",
        )
    if indicator != "none":
        return ProviderStatus(
            status=StatusLevel.DEGRADED,
            latency_ms=latency_ms,
            last_check=timestamp,
            message=f"Shopify reports {indicator} incident",
        )

    level = _latency_status(latency_ms)
    return ProviderStatus(
        status=level,
        latency_ms=latency_ms,
        last_check=timestamp,
        message="High latency" if level == StatusLevel.DEGRADED else None,
    )


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """Calculate overall service status from provider statuses."""
    statuses = [p.status for p in providers.values()]

    if StatusLevel.OUTAGE in statuses:
        return StatusLevel.OUTAGE
    if StatusLevel.DEGRADED in statuses:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/health", response_model=HealthResponse)
async def health_check(db: AsyncSession = Depends(get_read_db)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        await db.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status() -> ServiceStatusResponse:
    """Dependency status for status page aggregation (cached 10 s)."""
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in _status_cache:
        cached_time, cached_response = _status_cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    postgresql_status, schema_status, shopify_status = await asyncio.gather(
        check_postgresql(), check_schema(), check_shopify()
    )
    providers = {
        "postgresql": postgresql_status,
        "schema": schema_status,
        "shopify": shopify_status,
    }

    response = ServiceStatusResponse(
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=settings.api_version,
        providers=providers,
    )
    _status_cache[cache_key] = (now, response)
    return response


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics_endpoint() -> PlainTextResponse:
    """Prometheus metrics in text exposition format."""
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics disabled")
    return PlainTextResponse(get_metrics_handler()())
