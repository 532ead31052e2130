"""
Metrics Collection with Prometheus.

Exposes ledger and redemption metrics for monitoring.
"""

from enum import Enum

from prometheus_client import Counter, Gauge, Histogram, Info

from loyalty.config import settings


class MetricLabels(str, Enum):
    """Standard metric label names."""

    ENDPOINT = "endpoint"
    METHOD = "method"
    STATUS_CODE = "status_code"
    OPERATION = "operation"
    TRANSACTION_TYPE = "transaction_type"
    ERROR_TYPE = "error_type"


class LoyaltyMetrics:
    """
    Centralized metrics for the loyalty ledger.

    - HTTP requests (rate, duration, in progress)
    - Points credited and debited (by transaction type)
    - Redemptions (by flow and outcome)
    - Voucher transitions
    - Errors by type and operation
    """

    def __init__(self) -> None:
        """Initialize all Prometheus metrics."""

        # ====================================================================
        # Service Info
        # ====================================================================
        self.service_info = Info(
            "loyalty_service",
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
            "loyalty_http_requests_total",
            "Total HTTP requests",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD, MetricLabels.STATUS_CODE],
        )

        self.http_request_duration_seconds = Histogram(
            "loyalty_http_request_duration_seconds",
            "HTTP request duration in seconds",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self.http_requests_in_progress = Gauge(
            "loyalty_http_requests_in_progress",
            "Number of HTTP requests currently being processed",
            [MetricLabels.ENDPOINT, MetricLabels.METHOD],
        )

        # ====================================================================
        # Ledger Metrics
        # ====================================================================
        self.points_credited_total = Counter(
            "loyalty_points_credited_total",
            "Total points credited to accounts",
            [MetricLabels.TRANSACTION_TYPE],
        )

        self.points_debited_total = Counter(
            "loyalty_points_debited_total",
            "Total points debited from accounts",
            [MetricLabels.TRANSACTION_TYPE],
        )

        # ====================================================================
        # Redemption Metrics
        # ====================================================================
        self.redemptions_total = Counter(
            "loyalty_redemptions_total",
            "Redemption operations by flow and outcome",
            ["flow", "outcome"],
        )

        self.voucher_transitions_total = Counter(
            "loyalty_voucher_transitions_total",
            "Voucher lifecycle transitions",
            ["status"],
        )

        # ====================================================================
        # Error Metrics
        # ====================================================================
        self.errors_total = Counter(
            "loyalty_errors_total",
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

    def record_points(self, transaction_type: str, amount: int) -> None:
        """Record a balance movement; the sign of ``amount`` picks the counter."""
        if amount > 0:
            self.points_credited_total.labels(transaction_type=transaction_type).inc(amount)
        elif amount < 0:
            self.points_debited_total.labels(transaction_type=transaction_type).inc(-amount)

    def record_redemption(self, flow: str, outcome: str) -> None:
        """Record a redemption workflow outcome."""
        self.redemptions_total.labels(flow=flow, outcome=outcome).inc()

    def record_voucher_transition(self, status: str) -> None:
        """Record a voucher entering ``status``."""
        self.voucher_transitions_total.labels(status=status).inc()

    def record_error(self, error_type: str, operation: str) -> None:
        """Record error occurrence."""
        self.errors_total.labels(error_type=error_type, operation=operation).inc()


# Global metrics instance
metrics = LoyaltyMetrics()
