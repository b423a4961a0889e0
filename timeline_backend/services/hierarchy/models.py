"""
Hierarchy Models
Query filters exchanged with the hierarchy repository
"""

from typing import Optional

from pydantic import BaseModel, Field

from timeline_backend.core.permissions import PermissionAction, VisibilityLevel


class NodeFilter(BaseModel):
    """Filter for listing one user's timeline nodes on behalf of a viewer"""

    current_user_id: Optional[int] = Field(None, description="Viewer (None for anonymous)")
    target_user_id: int = Field(..., description="Owner of the listed nodes", gt=0)
    action: PermissionAction = Field(PermissionAction.VIEW)
    level: VisibilityLevel = Field(VisibilityLevel.OVERVIEW)
