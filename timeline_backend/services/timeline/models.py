"""
Timeline Models
Pydantic models for permission-filtered node listings
"""

import uuid
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from timeline_backend.core.permissions import VisibilityLevel
from timeline_backend.db.models import TimelineNode, User


class ParentReference(BaseModel):
    """Minimal description of a node's parent"""

    id: uuid.UUID
    type: str
    title: Optional[str] = None


class OwnerReference(BaseModel):
    """Public profile of the node owner"""

    id: int
    user_name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None


class TimelineNodeView(BaseModel):
    """Timeline node as returned to a viewer"""

    id: uuid.UUID
    type: str
    user_id: int
    parent_id: Optional[uuid.UUID] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime
    parent: Optional[ParentReference] = None
    owner: Optional[OwnerReference] = None

    @classmethod
    def from_db_model(
        cls,
        node: TimelineNode,
        parent: Optional[TimelineNode] = None,
        owner: Optional[User] = None,
    ) -> "TimelineNodeView":
        """Create TimelineNodeView from database model"""
        parent_ref = None
        if parent is not None:
            parent_ref = ParentReference(id=parent.id, type=parent.type, title=parent.title)
        owner_ref = None
        if owner is not None:
            owner_ref = OwnerReference(
                id=owner.id,
                user_name=owner.user_name,
                first_name=owner.first_name,
                last_name=owner.last_name,
                email=owner.email,
            )

        return cls(
            id=node.id,
            type=node.type,
            user_id=node.user_id,
            parent_id=node.parent_id,
            meta=node.meta or {},
            created_at=node.created_at,
            updated_at=node.updated_at,
            parent=parent_ref,
            owner=owner_ref,
        )


class NodePermissions(BaseModel):
    """What the viewer may do with one node"""

    can_view: bool
    can_edit: bool
    can_share: bool
    can_delete: bool
    access_level: Optional[VisibilityLevel] = None


class TimelineNodeWithPermissions(TimelineNodeView):
    """Timeline node decorated with the viewer's permissions"""

    permissions: NodePermissions
