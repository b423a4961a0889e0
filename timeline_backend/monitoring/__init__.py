"""
Monitoring module for application metrics
"""

from timeline_backend.monitoring.metrics import (
    get_metrics,
    metrics_registry,
    record_permission_decision,
    track_permission_operation,
    track_request,
)

__all__ = [
    "get_metrics",
    "metrics_registry",
    "record_permission_decision",
    "track_permission_operation",
    "track_request",
]
