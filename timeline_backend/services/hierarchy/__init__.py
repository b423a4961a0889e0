"""
Hierarchy Services
Node ownership, organization membership and username lookups used by the
permission engine
"""

from timeline_backend.services.hierarchy.base import (
    HierarchyRepository,
    OrganizationMembership,
    UserDirectory,
)
from timeline_backend.services.hierarchy.models import NodeFilter
from timeline_backend.services.hierarchy.repository import (
    SqlHierarchyRepository,
    SqlOrganizationMembership,
    SqlUserDirectory,
)

__all__ = [
    # Interfaces
    "HierarchyRepository",
    "OrganizationMembership",
    "UserDirectory",
    # SQL implementations
    "SqlHierarchyRepository",
    "SqlOrganizationMembership",
    "SqlUserDirectory",
    # Models
    "NodeFilter",
]
