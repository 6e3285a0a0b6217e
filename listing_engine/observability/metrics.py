"""
Metrics Collection with Prometheus.

Exposes business and system metrics for monitoring.
"""

import time
from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from listing_engine.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    ACTION_TYPE = "action_type"
    EVENT_TYPE = "event_type"
    ERROR_TYPE = "error_type"


class ListingEngineMetrics:
    """
    Centralized metrics for the Listing Engine API.

    Covers:
    - HTTP requests (rate, duration, errors)
    - Credit checks and deductions (rate, amount, denials)
    - Listing saves and deletes (rate, duration, readiness)
    - Plan-change webhook events (processed, duplicates)
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "listing_engine_service",
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
            "listing_engine_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "listing_engine_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "listing_engine_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.METHOD],
        )

        # ====================================================================
        # Credit Metrics
        # ====================================================================
        self.credit_checks_total = Counter(
            "listing_engine_credit_checks_total",
            "Total credit availability checks",
            [MetricLabels.ACTION_TYPE, "available", "reason"],
        )

        self.credit_deductions_total = Counter(
            "listing_engine_credit_deductions_total",
            "Total credit deductions attempted",
            [MetricLabels.ACTION_TYPE, "success", "reason"],
        )

        self.credits_deducted = Histogram(
            "listing_engine_credits_deducted",
            "Credits deducted per successful deduction",
            buckets=(0, 1, 3, 5, 10, 25, 50),
        )

        self.credit_deduction_duration_seconds = Histogram(
            "listing_engine_credit_deduction_duration_seconds",
            "Credit deduction duration in seconds",
            buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
        )

        self.accounts_created_total = Counter(
            "listing_engine_accounts_created_total",
            "Total accounts provisioned",
        )

        # ====================================================================
        # Listing Metrics
        # ====================================================================
        self.listing_saves_total = Counter(
            "listing_engine_listing_saves_total",
            "Total listing aggregate saves",
            [MetricLabels.OPERATION, "success"],
        )

        self.listing_save_duration_seconds = Histogram(
            "listing_engine_listing_save_duration_seconds",
            "Listing aggregate save duration in seconds",
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        self.listings_deleted_total = Counter(
            "listing_engine_listings_deleted_total",
            "Total listings deleted",
        )

        self.channel_readiness_score = Histogram(
            "listing_engine_channel_readiness_score",
            "Readiness score of saved channel overrides",
            ["channel"],
            buckets=(0, 25, 50, 75, 90, 100),
        )

        self.listings_exported_total = Counter(
            "listing_engine_listings_exported_total",
            "Channel exports generated",
            ["channel"],
        )

        # ====================================================================
        # Webhook Metrics
        # ====================================================================
        self.webhook_events_total = Counter(
            "listing_engine_webhook_events_total",
            "Payment provider webhook events",
            [MetricLabels.EVENT_TYPE, "outcome"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "listing_engine_errors_total",
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

    def record_credit_check(self, action_type: str, available: bool, reason: str | None) -> None:
        """Record credit check metrics."""
        self.credit_checks_total.labels(
            action_type=action_type, available=str(available), reason=reason or "none"
        ).inc()

    def record_deduction(
        self,
        action_type: str,
        success: bool,
        amount: int,
        duration: float,
        reason: str | None = None,
    ) -> None:
        """Record credit deduction metrics."""
        self.credit_deductions_total.labels(
            action_type=action_type, success=str(success), reason=reason or "none"
        ).inc()
        if success:
            self.credits_deducted.observe(amount)
        self.credit_deduction_duration_seconds.observe(duration)

    def record_listing_save(self, operation: str, success: bool, duration: float) -> None:
        """Record listing save metrics (operation is create or update)."""
        self.listing_saves_total.labels(operation=operation, success=str(success)).inc()
        if success:
            self.listing_save_duration_seconds.observe(duration)

    def record_webhook_event(self, event_type: str, outcome: str) -> None:
        """Record webhook event outcome (applied, duplicate, ignored)."""
        self.webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = ListingEngineMetrics()


class track_duration:
    """
    Context manager measuring elapsed wall time.

    Usage:
        with track_duration() as timer:
            await store.save(...)
        metrics.record_listing_save("create", True, timer.elapsed)
    """

    def __init__(self) -> None:
        self.start_time = 0.0
        self.elapsed = 0.0

    def __enter__(self) -> "track_duration":
        """Start timing."""
        self.start_time = time.monotonic()
        return self

    def __exit__(self, exc_type: object, exc_val: object, exc_tb: object) -> None:
        """Stop timing."""
        self.elapsed = time.monotonic() - self.start_time
