"""
Timeline Service
Permission-filtered node retrieval

Answers "what does viewer X see of user Y's timeline": resolve the username,
fetch Y's nodes, keep those the batch resolver allows, then attach parent
references. An unknown username and a profile with nothing shared both
produce an empty list.
"""

import uuid
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.core.logging import get_logger
from timeline_backend.core.permissions import PermissionAction, VisibilityLevel
from timeline_backend.db.models import TimelineNode
from timeline_backend.services.hierarchy import (
    HierarchyRepository,
    NodeFilter,
    SqlUserDirectory,
    UserDirectory,
)
from timeline_backend.services.permissions import (
    BatchAuthorizationResult,
    PermissionService,
    get_permission_service,
)
from timeline_backend.services.permissions.batch import dedupe_node_ids
from timeline_backend.services.permissions.store import validate_user_id
from timeline_backend.services.timeline.models import (
    NodePermissions,
    TimelineNodeView,
    TimelineNodeWithPermissions,
)

logger = get_logger(__name__)


class TimelineService:
    """Timeline listings filtered through the permission engine"""

    def __init__(
        self,
        permissions: Optional[PermissionService] = None,
        hierarchy: Optional[HierarchyRepository] = None,
        users: Optional[UserDirectory] = None,
    ):
        self.permissions = permissions or get_permission_service()
        self.hierarchy = hierarchy or self.permissions.hierarchy
        self.users = users or SqlUserDirectory()

    async def get_all_nodes(
        self,
        db: AsyncSession,
        requesting_user_id: Optional[int],
        target_username: Optional[str] = None,
        action: PermissionAction = PermissionAction.VIEW,
        level: VisibilityLevel = VisibilityLevel.OVERVIEW,
    ) -> List[TimelineNodeView]:
        """
        Nodes of the target user visible to the requester

        Args:
            db: Database session
            requesting_user_id: Viewer user id, None for anonymous callers
            target_username: Timeline owner; omitted means the requester
            action: Gated operation
            level: Minimum visibility level

        Returns:
            Visible nodes with parent references, or an empty list when the
            username is unknown
        """
        action = PermissionAction(action)
        level = VisibilityLevel(level)
        visible, target_user_id, _ = await self._visible_nodes(
            db, requesting_user_id, target_username, action, level
        )
        views = await self._enrich(db, visible, target_user_id)

        logger.debug(
            f"Returning {len(views)} nodes for user {requesting_user_id} "
            f"(target={target_user_id}, action={action.value}, level={level.value})"
        )
        return views

    async def get_all_nodes_with_permissions(
        self,
        db: AsyncSession,
        requesting_user_id: Optional[int],
        target_username: Optional[str] = None,
        action: PermissionAction = PermissionAction.VIEW,
        level: VisibilityLevel = VisibilityLevel.OVERVIEW,
    ) -> List[TimelineNodeWithPermissions]:
        """Same listing as ``get_all_nodes`` with per-node permission flags"""
        visible, target_user_id, is_owner_view = await self._visible_nodes(
            db, requesting_user_id, target_username, action, level
        )
        views = await self._enrich(db, visible, target_user_id)
        if not views:
            return []

        node_ids = [view.id for view in views]
        if is_owner_view:
            levels = {node_id: VisibilityLevel.FULL for node_id in node_ids}
            editable = set(node_ids)
        else:
            levels = await self.permissions.batch.get_access_levels(
                db, requesting_user_id, node_ids
            )
            edit_checks = await self.permissions.batch.batch_check_access(
                db,
                requesting_user_id,
                node_ids,
                PermissionAction.EDIT,
                VisibilityLevel.FULL,
            )
            editable = {check.node_id for check in edit_checks if check.can_access}

        results = []
        for view in views:
            access_level = levels.get(view.id)
            results.append(
                TimelineNodeWithPermissions(
                    **view.model_dump(),
                    permissions=NodePermissions(
                        can_view=access_level is not None,
                        can_edit=view.id in editable,
                        # Only owners change sharing settings or delete nodes
                        can_share=is_owner_view,
                        can_delete=is_owner_view,
                        access_level=access_level,
                    ),
                )
            )

        logger.debug(
            f"Returning {len(results)} nodes with permissions for user {requesting_user_id} "
            f"(target={target_user_id})"
        )
        return results

    async def check_batch_authorization(
        self,
        db: AsyncSession,
        requesting_user_id: Optional[int],
        node_ids: Sequence,
        target_username: Optional[str] = None,
        action: PermissionAction = PermissionAction.VIEW,
        level: VisibilityLevel = VisibilityLevel.OVERVIEW,
    ) -> BatchAuthorizationResult:
        """
        Batch authorization with the target given by username

        An unknown username puts every id in ``not_found``.
        """
        if not node_ids:
            return BatchAuthorizationResult()

        target_user_id = requesting_user_id
        if target_username:
            user = await self.users.get_user_by_username(db, target_username)
            if user is None:
                logger.debug(f"Batch authorization target {target_username} not found")
                return BatchAuthorizationResult(not_found=dedupe_node_ids(node_ids))
            target_user_id = user.id

        return await self.permissions.batch.check_batch_authorization(
            db,
            requesting_user_id,
            node_ids,
            target_user_id=target_user_id,
            action=action,
            level=level,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _visible_nodes(
        self,
        db: AsyncSession,
        requesting_user_id: Optional[int],
        target_username: Optional[str],
        action: PermissionAction,
        level: VisibilityLevel,
    ) -> Tuple[List[TimelineNode], Optional[int], bool]:
        validate_user_id(requesting_user_id, allow_anonymous=True)
        action = PermissionAction(action)
        level = VisibilityLevel(level)

        if target_username:
            user = await self.users.get_user_by_username(db, target_username)
            if user is None:
                logger.debug(f"User not found for username {target_username}")
                return [], None, False
            target_user_id = user.id
        else:
            target_user_id = requesting_user_id

        if target_user_id is None:
            return [], None, False

        nodes = await self.hierarchy.get_all_nodes(
            db,
            NodeFilter(
                current_user_id=requesting_user_id,
                target_user_id=target_user_id,
                action=action,
                level=level,
            ),
        )

        if requesting_user_id is not None and requesting_user_id == target_user_id:
            return nodes, target_user_id, True

        checks = await self.permissions.batch.batch_check_access(
            db,
            requesting_user_id,
            [node.id for node in nodes],
            action,
            level,
        )
        allowed = {check.node_id for check in checks if check.can_access}
        return [node for node in nodes if node.id in allowed], target_user_id, False

    async def _enrich(
        self,
        db: AsyncSession,
        nodes: List[TimelineNode],
        owner_id: Optional[int],
    ) -> List[TimelineNodeView]:
        if not nodes:
            return []

        parent_ids = {node.parent_id for node in nodes if node.parent_id is not None}
        parents: Dict[uuid.UUID, TimelineNode] = {}
        if parent_ids:
            parents = await self.hierarchy.get_by_ids(db, parent_ids, owner_id)
        owners = await self.users.get_users_by_ids(db, {node.user_id for node in nodes})

        return [
            TimelineNodeView.from_db_model(
                node,
                parents.get(node.parent_id) if node.parent_id is not None else None,
                owners.get(node.user_id),
            )
            for node in nodes
        ]


# Global service instance
_timeline_service: Optional[TimelineService] = None


def get_timeline_service() -> TimelineService:
    """Get the global timeline service instance"""
    global _timeline_service
    if _timeline_service is None:
        _timeline_service = TimelineService()
    return _timeline_service
