"""
Prometheus metrics for the reservation engine.

Service timings come from ``@BaseService.measure_operation``; hold and cart
outcomes are recorded by the services that produce them.
"""

from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

# Create a custom registry to avoid conflicts with default metrics
REGISTRY = CollectorRegistry()

service_operation_duration_seconds = Histogram(
    "tutorcart_service_operation_duration_seconds",
    "Service operation duration in seconds",
    ["service", "operation"],
    registry=REGISTRY,
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
)

service_operations_total = Counter(
    "tutorcart_service_operations_total",
    "Total number of service operations",
    ["service", "operation", "status"],
    registry=REGISTRY,
)

errors_total = Counter(
    "tutorcart_errors_total",
    "Total number of errors",
    ["service", "operation", "error_type"],
    registry=REGISTRY,
)

slot_hold_acquisitions_total = Counter(
    "tutorcart_slot_hold_acquisitions_total",
    "Slot hold acquisition attempts by outcome",
    ["outcome"],
    registry=REGISTRY,
)

cart_batch_sessions_total = Counter(
    "tutorcart_cart_batch_sessions_total",
    "Sessions processed by batch add, by result",
    ["result"],
    registry=REGISTRY,
)

cart_items_repaired_total = Counter(
    "tutorcart_cart_items_repaired_total",
    "Cart items purged by lazy repair",
    registry=REGISTRY,
)


class PrometheusMetrics:
    """Manages Prometheus metrics collection and exposure."""

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
            service: Service name (e.g., 'CartService')
            operation: Operation/method name (e.g., 'add_item')
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
    def record_hold_acquisition(outcome: str) -> None:
        """outcome: created, refreshed, held_elsewhere, booked."""
        slot_hold_acquisitions_total.labels(outcome=outcome).inc()

    @staticmethod
    def record_batch_result(added: int, skipped: int) -> None:
        if added:
            cart_batch_sessions_total.labels(result="added").inc(added)
        if skipped:
            cart_batch_sessions_total.labels(result="skipped").inc(skipped)

    @staticmethod
    def record_lazy_repair(count: int) -> None:
        if count:
            cart_items_repaired_total.inc(count)

    @staticmethod
    def get_metrics() -> bytes:
        return generate_latest(REGISTRY)

    @staticmethod
    def get_content_type() -> str:
        return CONTENT_TYPE_LATEST


prometheus_metrics = PrometheusMetrics()
