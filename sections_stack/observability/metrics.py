"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

from enum import Enum
from typing import Callable

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, Info, generate_latest

from sections_stack.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    VARIANT = "variant"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class SectionsStackMetrics:
    """
    Centralized metrics for the Sections Stack API.

    Covers:
    - HTTP requests (rate, duration, in flight)
    - Billing events (by signal variant and processing outcome)
    - Entitlement writes and store retries
    - Shopify Admin API calls and theme publishes
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "sections_stack_service",
            "Service information",
        )
        self.service_info.info(
            {
                "version": settings.api_version,
                "service_name": settings.service_name,
            }
        )

        # ====================================================================
        # HTTP Metrics
        # ====================================================================
        self.http_requests_total = Counter(
            "sections_stack_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "sections_stack_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "sections_stack_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Billing Event Metrics
        # ====================================================================
        self.billing_events_total = Counter(
            "sections_stack_billing_events_total",
            "Billing signals processed, by variant and outcome",
            [MetricLabels.VARIANT, MetricLabels.OUTCOME],
        )

        self.billing_event_duration_seconds = Histogram(
            "sections_stack_billing_event_duration_seconds",
            "Normalize + reconcile duration in seconds",
            [MetricLabels.VARIANT],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        # ====================================================================
        # Entitlement Store Metrics
        # ====================================================================
        self.entitlement_writes_total = Counter(
            "sections_stack_entitlement_writes_total",
            "Entitlement rows written",
            [MetricLabels.OPERATION],
        )

        self.store_retries_total = Counter(
            "sections_stack_store_retries_total",
            "Retries after transient store failures",
            [MetricLabels.OPERATION],
        )

        # ====================================================================
        # Shopify Metrics
        # ====================================================================
        self.shopify_api_calls_total = Counter(
            "sections_stack_shopify_api_calls_total",
            "Shopify Admin API calls",
            [MetricLabels.OPERATION, "success"],
        )

        self.shopify_api_duration_seconds = Histogram(
            "sections_stack_shopify_api_duration_seconds",
            "Shopify Admin API call duration in seconds",
            [MetricLabels.OPERATION],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 15.0),
        )

        self.theme_publishes_total = Counter(
            "sections_stack_theme_publishes_total",
            "Sections pushed into merchant themes",
            ["success"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "sections_stack_errors_total",
            "Total errors by type",
            [MetricLabels.ERROR_TYPE, MetricLabels.OPERATION],
        )

    # ========================================================================
    # Helper Methods
    # ========================================================================

    def record_http_request(
        self, endpoint: str, method: str, status_code: int, duration: float
    ) -> None:
        """Record HTTP request metrics."""
        self.http_requests_total.labels(
            endpoint=endpoint, method=method, status_code=status_code
        ).inc()
        self.http_request_duration_seconds.labels(endpoint=endpoint, method=method).observe(
            duration
        )

    def record_billing_event(self, variant: str, outcome: str, duration: float) -> None:
        """Record one processed billing signal."""
        self.billing_events_total.labels(variant=variant, outcome=outcome).inc()
        self.billing_event_duration_seconds.labels(variant=variant).observe(duration)

    def record_entitlement_write(self, created: bool) -> None:
        """Record an entitlement insert or update."""
        self.entitlement_writes_total.labels(operation="created" if created else "updated").inc()

    def record_store_retry(self, operation: str) -> None:
        """Record a retry after StoreUnavailableError."""
        self.store_retries_total.labels(operation=operation).inc()

    def record_shopify_call(self, operation: str, success: bool, duration: float) -> None:
        """Record a Shopify Admin API call."""
        self.shopify_api_calls_total.labels(operation=operation, success=str(success)).inc()
        self.shopify_api_duration_seconds.labels(operation=operation).observe(duration)

    def record_theme_publish(self, success: bool) -> None:
        """Record a theme publish attempt."""
        self.theme_publishes_total.labels(success=str(success)).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = SectionsStackMetrics()


def get_metrics_handler() -> Callable[[], bytes]:
    """Prometheus exposition for the default registry."""

    def metrics_endpoint() -> bytes:
        return generate_latest(REGISTRY)

    return metrics_endpoint
