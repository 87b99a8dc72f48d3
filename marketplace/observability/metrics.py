"""
Metrics Collection with Prometheus.

Exposes marketplace business and system metrics for monitoring.
"""

from enum import StrEnum

from prometheus_client import Counter, Gauge, Histogram, Info

from marketplace.config import settings


class MetricLabels(StrEnum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    OUTCOME = "outcome"
    ERROR_TYPE = "error_type"


class MarketplaceMetrics:
    """
    Centralized metrics for the marketplace API.

    Covers:
    - HTTP requests (rate, duration, in-flight)
    - Settlements (outcome, amount, duration)
    - Download tokens (issued, redemptions by outcome)
    - Uploads (attempts, final outcome, duration)
    - Errors by type
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "marketplace_service",
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
            "marketplace_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "marketplace_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "marketplace_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Settlement Metrics
        # ====================================================================
        self.settlements_total = Counter(
            "marketplace_settlements_total",
            "Total settlement attempts by outcome",
            [MetricLabels.OUTCOME],
        )

        self.settlement_amount_minor = Histogram(
            "marketplace_settlement_amount_minor",
            "Settled sale amounts in minor units (cents)",
            buckets=(50, 100, 250, 500, 1000, 2500, 5000, 10000, 25000, 50000),
        )

        self.settlement_duration_seconds = Histogram(
            "marketplace_settlement_duration_seconds",
            "Settlement duration in seconds",
            buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
        )

        # ====================================================================
        # Download Token Metrics
        # ====================================================================
        self.download_tokens_issued_total = Counter(
            "marketplace_download_tokens_issued_total",
            "Total download tokens issued (new tokens only)",
        )

        self.redemptions_total = Counter(
            "marketplace_download_redemptions_total",
            "Download token redemptions by outcome",
            [MetricLabels.OUTCOME],
        )

        # ====================================================================
        # Upload Metrics
        # ====================================================================
        self.upload_attempts_total = Counter(
            "marketplace_upload_attempts_total",
            "Individual upload attempts by outcome",
            [MetricLabels.OUTCOME],
        )

        self.uploads_total = Counter(
            "marketplace_uploads_total",
            "Upload operations by final outcome",
            [MetricLabels.OUTCOME],
        )

        self.upload_duration_seconds = Histogram(
            "marketplace_upload_duration_seconds",
            "End-to-end upload duration including retries",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "marketplace_errors_total",
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

    def record_settlement(self, outcome: str, amount_minor: int, duration: float) -> None:
        """Record a settlement attempt. Amount is observed only for new sales."""
        self.settlements_total.labels(outcome=outcome).inc()
        if outcome == "completed":
            self.settlement_amount_minor.observe(amount_minor)
        self.settlement_duration_seconds.observe(duration)

    def record_token_issued(self) -> None:
        """Record issuance of a new download token."""
        self.download_tokens_issued_total.inc()

    def record_redemption(self, outcome: str) -> None:
        """Record a redemption attempt (redeemed, already_used, expired, not_found)."""
        self.redemptions_total.labels(outcome=outcome).inc()

    def record_upload_attempt(self, outcome: str) -> None:
        """Record one upload attempt (success, transient, rejected)."""
        self.upload_attempts_total.labels(outcome=outcome).inc()

    def record_upload(self, outcome: str, duration: float) -> None:
        """Record the final outcome of an upload operation."""
        self.uploads_total.labels(outcome=outcome).inc()
        self.upload_duration_seconds.observe(duration)

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = MarketplaceMetrics()

