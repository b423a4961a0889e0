"""
Node Permission Services
Policy-based access control for timeline nodes

This package provides:
- Policy storage with atomic replace
- Single access decisions with owner bypass and subject precedence
- Batch resolution with a fixed number of queries
- Owner-only policy administration
"""

from timeline_backend.services.permissions.admin import PolicyAdministration
from timeline_backend.services.permissions.batch import BatchResolver
from timeline_backend.services.permissions.evaluator import AccessEvaluator
from timeline_backend.services.permissions.models import (
    AccessibleNode,
    BatchAuthorizationResult,
    EffectivePermissions,
    NodeAccessCheck,
    PolicyRecord,
    PolicySpec,
    PolicyUpdate,
)
from timeline_backend.services.permissions.service import (
    PermissionService,
    get_permission_service,
)
from timeline_backend.services.permissions.store import PolicyStore

__all__ = [
    # Main service
    "PermissionService",
    "get_permission_service",
    # Components
    "PolicyStore",
    "AccessEvaluator",
    "BatchResolver",
    "PolicyAdministration",
    # Models
    "PolicySpec",
    "PolicyUpdate",
    "PolicyRecord",
    "AccessibleNode",
    "NodeAccessCheck",
    "BatchAuthorizationResult",
    "EffectivePermissions",
]
