"""
Permission Service
Wires the policy store, evaluator, batch resolver and administration
around one set of hierarchy collaborators
"""

from typing import Optional

from timeline_backend.core.logging import get_logger
from timeline_backend.services.hierarchy import (
    HierarchyRepository,
    OrganizationMembership,
    SqlHierarchyRepository,
    SqlOrganizationMembership,
)
from timeline_backend.services.permissions.admin import PolicyAdministration
from timeline_backend.services.permissions.batch import BatchResolver
from timeline_backend.services.permissions.evaluator import AccessEvaluator
from timeline_backend.services.permissions.store import PolicyStore

logger = get_logger(__name__)


class PermissionService:
    """
    Node permission engine

    Example:
        ```python
        service = get_permission_service()
        allowed = await service.evaluator.can_access(db, viewer_id, node_id)
        ```
    """

    def __init__(
        self,
        hierarchy: Optional[HierarchyRepository] = None,
        membership: Optional[OrganizationMembership] = None,
    ):
        self.hierarchy = hierarchy or SqlHierarchyRepository()
        self.membership = membership or SqlOrganizationMembership()

        self.store = PolicyStore(hierarchy=self.hierarchy)
        self.evaluator = AccessEvaluator(store=self.store, membership=self.membership)
        self.batch = BatchResolver(
            store=self.store,
            hierarchy=self.hierarchy,
            membership=self.membership,
        )
        self.admin = PolicyAdministration(
            store=self.store,
            hierarchy=self.hierarchy,
            membership=self.membership,
        )

        logger.debug("PermissionService initialized")


# Global service instance
_permission_service: Optional[PermissionService] = None


def get_permission_service() -> PermissionService:
    """Get the global permission service instance"""
    global _permission_service
    if _permission_service is None:
        _permission_service = PermissionService()
    return _permission_service
