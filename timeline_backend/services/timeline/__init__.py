"""
Timeline Services
Permission-filtered timeline node retrieval
"""

from timeline_backend.services.timeline.models import (
    NodePermissions,
    OwnerReference,
    ParentReference,
    TimelineNodeView,
    TimelineNodeWithPermissions,
)
from timeline_backend.services.timeline.service import TimelineService, get_timeline_service

__all__ = [
    "TimelineService",
    "get_timeline_service",
    "NodePermissions",
    "OwnerReference",
    "ParentReference",
    "TimelineNodeView",
    "TimelineNodeWithPermissions",
]
