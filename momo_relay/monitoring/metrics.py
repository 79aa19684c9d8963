"""
Prometheus metrics for payment relay monitoring.

Tracks:
- Payment initiation outcomes
- Gateway API calls and their duration
- Webhook deliveries and processing outcomes
- Token resolution retries
"""
from prometheus_client import Counter, Histogram

# Payment metrics
payment_initiations_total = Counter(
    "payment_initiations_total",
    "Total number of payment initiation attempts",
    ["outcome"],  # success, validation_error, timeout, http_status, ...
)

payment_initiation_duration_seconds = Histogram(
    "payment_initiation_duration_seconds",
    "Payment initiation duration in seconds",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 45.0),
)

# Gateway API metrics
gateway_requests_total = Counter(
    "gateway_requests_total",
    "Total FusionPay API requests",
    ["operation", "status"],  # status: ok, timeout, http_error, transport_error
)

gateway_request_duration_seconds = Histogram(
    "gateway_request_duration_seconds",
    "FusionPay API call duration in seconds",
    ["operation"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 45.0),
)

# Webhook metrics
webhook_events_received_total = Counter(
    "webhook_events_received_total",
    "Total webhook events received",
    ["event_type"],
)

webhook_events_processed_total = Counter(
    "webhook_events_processed_total",
    "Total webhook events processed",
    ["event_type", "outcome"],  # applied, duplicate, superseded, not_found, ...
)

webhook_processing_duration_seconds = Histogram(
    "webhook_processing_duration_seconds",
    "Webhook processing duration in seconds",
    ["event_type"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

webhook_resolve_retries_total = Counter(
    "webhook_resolve_retries_total",
    "Token lookups repeated because the transaction was not visible yet",
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_payment_initiation(outcome: str, duration_seconds: float) -> None:
        """Record a payment initiation attempt."""
        payment_initiations_total.labels(outcome=outcome).inc()
        payment_initiation_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_gateway_call(operation: str, status: str, duration_seconds: float) -> None:
        """Record a gateway API call."""
        gateway_requests_total.labels(operation=operation, status=status).inc()
        gateway_request_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_webhook_received(event_type: str) -> None:
        webhook_events_received_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_webhook_processed(event_type: str, outcome: str, duration_seconds: float) -> None:
        """Record the final outcome of a webhook delivery."""
        webhook_events_processed_total.labels(event_type=event_type, outcome=outcome).inc()
        webhook_processing_duration_seconds.labels(event_type=event_type).observe(
            duration_seconds
        )

    @staticmethod
    def record_resolve_retry() -> None:
        webhook_resolve_retries_total.inc()


# Export singleton instance
metrics = MetricsCollector()
