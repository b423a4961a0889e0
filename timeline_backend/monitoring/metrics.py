"""
Prometheus metrics for the career timeline service
"""

import time
from functools import wraps
from typing import Any, Callable, Optional

from prometheus_client import Counter, Histogram, CollectorRegistry
from prometheus_client.exposition import generate_latest

from timeline_backend.core.logging import get_logger

logger = get_logger(__name__)

# Create a custom registry
metrics_registry = CollectorRegistry()

# Request metrics
http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status"],
    registry=metrics_registry
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=(.005, .01, .025, .05, .075, .1, .25, .5, .75, 1.0, 2.5, 5.0, 7.5, 10.0),
    registry=metrics_registry
)

# Permission metrics
permission_checks_total = Counter(
    "permission_checks_total",
    "Permission decisions by outcome",
    ["operation", "outcome"],
    registry=metrics_registry
)

permission_operation_duration_seconds = Histogram(
    "permission_operation_duration_seconds",
    "Permission engine operation latency",
    ["operation"],
    buckets=(.001, .005, .01, .025, .05, .1, .25, .5, 1.0, 2.5),
    registry=metrics_registry
)

permission_batch_size = Histogram(
    "permission_batch_size",
    "Number of node ids per batch permission call",
    ["operation"],
    buckets=(1, 10, 50, 100, 250, 500, 1000, 2500),
    registry=metrics_registry
)

permission_slow_operations_total = Counter(
    "permission_slow_operations_total",
    "Permission operations exceeding their latency budget",
    ["operation"],
    registry=metrics_registry
)

policy_writes_total = Counter(
    "policy_writes_total",
    "Policy store writes",
    ["operation"],
    registry=metrics_registry
)

expired_policies_removed_total = Counter(
    "expired_policies_removed_total",
    "Expired policies physically removed by the cleanup sweep",
    registry=metrics_registry
)

# Error metrics
errors_total = Counter(
    "errors_total",
    "Total errors",
    ["error_type", "endpoint"],
    registry=metrics_registry
)


def track_request(method: str, endpoint: str):
    """Decorator to track HTTP requests"""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            start_time = time.time()
            status = "success"
            try:
                result = await func(*args, **kwargs)
                return result
            except Exception as e:
                status = "error"
                errors_total.labels(
                    error_type=type(e).__name__,
                    endpoint=endpoint
                ).inc()
                raise
            finally:
                duration = time.time() - start_time
                http_requests_total.labels(
                    method=method,
                    endpoint=endpoint,
                    status=status
                ).inc()
                http_request_duration_seconds.labels(
                    method=method,
                    endpoint=endpoint
                ).observe(duration)
        return wrapper
    return decorator


def track_permission_operation(
    operation: str,
    slow_threshold_ms: float,
    batch_size: Optional[int] = None,
    **context: Any,
):
    """
    Context manager timing a permission engine operation

    Observes the latency histogram and logs a warning with the supplied
    context (user id, node id(s), ...) when the operation takes longer than
    ``slow_threshold_ms``. The threshold is a monitoring signal only.
    """
    class PermissionOperationContext:
        def __init__(self):
            self.start_time = None
            self.duration_ms: Optional[float] = None

        async def __aenter__(self):
            self.start_time = time.perf_counter()
            if batch_size is not None:
                permission_batch_size.labels(operation=operation).observe(batch_size)
            return self

        async def __aexit__(self, exc_type, exc_val, exc_tb):
            duration = time.perf_counter() - self.start_time
            self.duration_ms = duration * 1000
            permission_operation_duration_seconds.labels(operation=operation).observe(duration)

            if self.duration_ms > slow_threshold_ms:
                permission_slow_operations_total.labels(operation=operation).inc()
                fields = " ".join(f"{key}={value}" for key, value in context.items())
                if batch_size is not None:
                    fields = f"batch_size={batch_size} {fields}"
                logger.warning(
                    f"Slow permission operation detected: {operation} "
                    f"duration_ms={self.duration_ms:.1f} {fields}".rstrip()
                )
            return False

    return PermissionOperationContext()


def record_permission_decision(operation: str, allowed: bool) -> None:
    """Count an access decision"""
    permission_checks_total.labels(
        operation=operation,
        outcome="allowed" if allowed else "denied",
    ).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics exposition format"""
    return generate_latest(metrics_registry)
