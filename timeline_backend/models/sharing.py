"""
Sharing Pydantic Models
Request/response schemas for node permission endpoints
"""

import uuid
from typing import List, Optional

from pydantic import BaseModel, Field

from timeline_backend.core.permissions import PermissionAction, VisibilityLevel
from timeline_backend.services.permissions.models import (
    AccessibleNode,
    PolicyRecord,
    PolicySpec,
    PolicyUpdate,
)


class SetPermissionsRequest(BaseModel):
    """Replace every policy of a node; an empty list makes it private"""
    policies: List[PolicySpec] = Field(default_factory=list)


class BulkSubjectPermissionsRequest(BaseModel):
    """Policies across several nodes; each must name its node"""
    policies: List[PolicySpec] = Field(..., min_length=1)


class NodePoliciesResponse(BaseModel):
    """Policies of one node"""
    node_id: uuid.UUID
    policies: List[PolicyRecord]


class BulkNodePoliciesRequest(BaseModel):
    """Node ids whose policies should be returned"""
    node_ids: List[str] = Field(..., min_length=1)


class BulkNodePoliciesResponse(BaseModel):
    """Policies of several nodes"""
    nodes: List[NodePoliciesResponse]


class PolicyUpdateItem(BaseModel):
    """One entry of a bulk policy update"""
    policy_id: str
    updates: PolicyUpdate


class BulkPolicyUpdateRequest(BaseModel):
    """Several partial updates applied together"""
    updates: List[PolicyUpdateItem] = Field(..., min_length=1)


class BulkPolicyUpdateResponse(BaseModel):
    """Result of a bulk policy update"""
    updated: List[PolicyRecord]


class BatchAuthorizationRequest(BaseModel):
    """Node ids to authorize against one target user"""
    node_ids: List[str] = Field(default_factory=list)
    target_username: Optional[str] = Field(None, description="Defaults to the requester")
    action: PermissionAction = PermissionAction.VIEW
    level: VisibilityLevel = VisibilityLevel.OVERVIEW


class NodeAccessResponse(BaseModel):
    """Access of the caller to one node"""
    node_id: uuid.UUID
    access_level: Optional[VisibilityLevel] = None
    can_view: bool
    can_edit: bool


class AccessibleNodesResponse(BaseModel):
    """Every node the caller can access"""
    nodes: List[AccessibleNode]
    total: int
