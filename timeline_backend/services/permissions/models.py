"""
Permission Models
Pydantic models for the node permission engine
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from timeline_backend.core.permissions import (
    PermissionAction,
    PolicyEffect,
    Subject,
    SubjectType,
    VisibilityLevel,
    make_subject,
)


class PolicySpec(BaseModel):
    """
    A policy to be written by Policy Administration

    ``node_id`` is only used by multi-node operations; single-node writes
    take the node from the call. Subject consistency is checked by
    ``to_subject`` so administration can surface it as a validation error.
    """

    node_id: Optional[uuid.UUID] = Field(None, description="Target node (multi-node writes only)")
    subject_type: SubjectType = Field(..., description="public, organization or user")
    subject_id: Optional[int] = Field(None, description="Organization or user id; absent for public")
    action: PermissionAction = Field(PermissionAction.VIEW, description="Gated operation")
    level: VisibilityLevel = Field(..., description="overview or full")
    effect: PolicyEffect = Field(PolicyEffect.ALLOW, description="ALLOW or DENY")
    expires_at: Optional[datetime] = Field(None, description="Policy stops applying at this time")

    @field_validator("effect", mode="before")
    @classmethod
    def normalize_effect(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    def to_subject(self) -> Subject:
        return make_subject(self.subject_type, self.subject_id)


class PolicyUpdate(BaseModel):
    """Partial policy update; unset fields are left unchanged"""

    level: Optional[VisibilityLevel] = None
    action: Optional[PermissionAction] = None
    effect: Optional[PolicyEffect] = None
    expires_at: Optional[datetime] = None

    @field_validator("effect", mode="before")
    @classmethod
    def normalize_effect(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v


class PolicyRecord(BaseModel):
    """Stored policy"""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    node_id: uuid.UUID
    subject_type: SubjectType
    subject_id: Optional[int] = None
    action: PermissionAction
    level: VisibilityLevel
    effect: PolicyEffect
    granted_by: int
    expires_at: Optional[datetime] = None
    created_at: datetime


class OrganizationAccess(BaseModel):
    """Organization granted a level on a node"""

    organization_id: int
    level: VisibilityLevel


class UserAccess(BaseModel):
    """User granted a level on a node"""

    user_id: int
    level: VisibilityLevel


class EffectivePermissions(BaseModel):
    """Who can see a node, derived from its non-expired ALLOW policies"""

    node_id: uuid.UUID
    public: Optional[VisibilityLevel] = Field(None, description="Level granted to everyone")
    organizations: List[OrganizationAccess] = Field(default_factory=list)
    users: List[UserAccess] = Field(default_factory=list)


class AccessibleNode(BaseModel):
    """Resolved access of one viewer to one node"""

    node_id: uuid.UUID
    access_level: VisibilityLevel
    can_edit: bool = False


class NodeAccessCheck(BaseModel):
    """Boolean access result for one node"""

    node_id: uuid.UUID
    can_access: bool


class BatchAuthorizationResult(BaseModel):
    """Partition of a node id list by authorization outcome"""

    authorized: List[uuid.UUID] = Field(default_factory=list)
    unauthorized: List[uuid.UUID] = Field(default_factory=list)
    not_found: List[uuid.UUID] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.authorized) + len(self.unauthorized) + len(self.not_found)
