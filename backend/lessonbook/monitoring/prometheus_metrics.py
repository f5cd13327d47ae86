"""
Prometheus metrics for the lessonbook engine.

Service timings are fed by the ``@BaseService.measure_operation`` decorator;
the domain counters below are recorded by the reservation engine, the
invoice state machine, the hold sweep and the outbox dispatcher.
"""

from threading import Lock
from typing import Optional, cast

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Custom registry keeps test runs and multiple app instances isolated from the default one
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "lessonbook_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "lessonbook_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "lessonbook_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

reservation_commit_conflicts_total = Counter(
    "lessonbook_reservation_commit_conflicts_total",
    "Slot lock compare-and-set attempts lost to a concurrent writer",
    ["resource_id"],
    registry=REGISTRY,
)

reservation_lock_total = Counter(
    "lessonbook_reservation_lock_total",
    "Advisory reservation lock acquisitions by outcome",
    ["outcome"],  # acquired | contended | skipped | error
    registry=REGISTRY,
)

invoice_transitions_total = Counter(
    "lessonbook_invoice_transitions_total",
    "Invoice status transitions by target status and outcome",
    ["to_status", "outcome"],  # outcome: applied | lost
    registry=REGISTRY,
)

payment_holds_expired_total = Counter(
    "lessonbook_payment_holds_expired_total",
    "Payment holds released by expiry",
    ["trigger"],  # sweep | inline
    registry=REGISTRY,
)

notifications_outbox_total = Counter(
    "lessonbook_notifications_outbox_total",
    "Total outbox events by terminal status",
    ["status", "event_type"],
    registry=REGISTRY,
)

notifications_outbox_attempt_total = Counter(
    "lessonbook_notifications_outbox_attempt_total",
    "Number of outbox delivery attempts",
    ["event_type"],
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Records and exposes lessonbook metrics."""

    _lock: Lock = Lock()

    @staticmethod
    def record_service_operation(
        service: str,
        operation: str,
        duration: float,
        status: str = "success",
        error_type: Optional[str] = None,
    ) -> None:
        """
        Record service operation metrics from @measure_operation decorator.

        Args:
            service: Service name (e.g., 'ReservationService')
            operation: Operation name (e.g., 'create_reservation')
            duration: Operation duration in seconds
            status: Operation status ('success' or 'error')
            error_type: Type of error if status is 'error'
        """
        service_operation_duration_seconds.labels(service=service, operation=operation).observe(
            duration
        )
        service_operations_total.labels(service=service, operation=operation, status=status).inc()
        if status == "error" and error_type:
            errors_total.labels(service=service, operation=operation, error_type=error_type).inc()

    @staticmethod
    def inc_commit_conflict(resource_id: str) -> None:
        reservation_commit_conflicts_total.labels(resource_id=resource_id).inc()

    @staticmethod
    def inc_reservation_lock(outcome: str) -> None:
        reservation_lock_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_invoice_transition(to_status: str, applied: bool) -> None:
        outcome = "applied" if applied else "lost"
        invoice_transitions_total.labels(to_status=to_status, outcome=outcome).inc()

    @staticmethod
    def inc_hold_expired(trigger: str) -> None:
        payment_holds_expired_total.labels(trigger=trigger).inc()

    @staticmethod
    def record_notification_attempt(event_type: str) -> None:
        notifications_outbox_attempt_total.labels(event_type=event_type).inc()

    @staticmethod
    def record_notification_outcome(event_type: str, status: str) -> None:
        notifications_outbox_total.labels(status=status, event_type=event_type).inc()

    @staticmethod
    def get_metrics() -> bytes:
        """Generate metrics in the Prometheus text exposition format."""
        with PrometheusMetrics._lock:
            return cast(bytes, generate_latest(REGISTRY))

    @staticmethod
    def get_content_type() -> str:
        return cast(str, CONTENT_TYPE_LATEST)


# Singleton instance
prometheus_metrics = PrometheusMetrics()
