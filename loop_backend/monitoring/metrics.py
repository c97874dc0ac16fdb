"""
Prometheus metrics for the backend operations.

Tracks:
- Webhook delivery attempts by outcome
- Webhook delivery duration
- Webhook events created
- Operation executions and retries
- Credential decryption failures

Metrics are registered on the default registry; exposing them is left to
the embedding worker.
"""
from prometheus_client import Counter, Histogram

# Webhook metrics
webhook_delivery_attempts_total = Counter(
    "webhook_delivery_attempts_total",
    "Total webhook delivery attempts",
    ["outcome"],  # delivered, retry_scheduled, failed
)

webhook_delivery_duration_seconds = Histogram(
    "webhook_delivery_duration_seconds",
    "Webhook POST duration in seconds",
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)

webhook_events_created_total = Counter(
    "webhook_events_created_total",
    "Total webhook events created",
    ["event_type"],
)

# Operation metrics
operation_executions_total = Counter(
    "operation_executions_total",
    "Total backend operation executions",
    ["operation", "status"],  # success, error
)

operation_retries_total = Counter(
    "operation_retries_total",
    "Total automatic retries of backend operations",
    ["operation"],
)

operation_duration_seconds = Histogram(
    "operation_duration_seconds",
    "Backend operation duration in seconds",
    ["operation"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

# Vault metrics
credential_decrypt_failures_total = Counter(
    "credential_decrypt_failures_total",
    "Total credential envelope decryption failures",
    ["reason"],  # integrity, malformed
)


class MetricsCollector:
    """Helper class for collecting metrics."""

    @staticmethod
    def record_webhook_delivery(outcome: str, duration_seconds: float) -> None:
        """Record a webhook delivery attempt."""
        webhook_delivery_attempts_total.labels(outcome=outcome).inc()
        webhook_delivery_duration_seconds.observe(duration_seconds)

    @staticmethod
    def record_webhook_event_created(event_type: str) -> None:
        """Record webhook event creation."""
        webhook_events_created_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_operation(operation: str, status: str, duration_seconds: float) -> None:
        """Record an operation execution."""
        operation_executions_total.labels(operation=operation, status=status).inc()
        operation_duration_seconds.labels(operation=operation).observe(duration_seconds)

    @staticmethod
    def record_operation_retry(operation: str) -> None:
        """Record an automatic operation retry."""
        operation_retries_total.labels(operation=operation).inc()

    @staticmethod
    def record_decrypt_failure(reason: str) -> None:
        """Record a credential decryption failure."""
        credential_decrypt_failures_total.labels(reason=reason).inc()


# Export singleton instance
metrics = MetricsCollector()
