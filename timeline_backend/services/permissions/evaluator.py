"""
Access Evaluator
Single (viewer, node, action, level) access decisions

Every call re-reads ownership and policies; nothing is cached between
calls. Callers that need many decisions use the batch resolver.
"""

from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.core.config import settings
from timeline_backend.core.logging import get_logger
from timeline_backend.core.permissions import (
    OrganizationSubject,
    PermissionAction,
    ViewerContext,
    VisibilityLevel,
    evaluate_policies,
    resolve_access_level,
)
from timeline_backend.models.permission import NodePolicy
from timeline_backend.monitoring.metrics import (
    record_permission_decision,
    track_permission_operation,
)
from timeline_backend.services.hierarchy import (
    OrganizationMembership,
    SqlOrganizationMembership,
)
from timeline_backend.services.permissions.store import (
    PolicyStore,
    validate_node_id,
    validate_user_id,
)

logger = get_logger(__name__)


class AccessEvaluator:
    """Decides whether one viewer may act on one node"""

    def __init__(
        self,
        store: Optional[PolicyStore] = None,
        membership: Optional[OrganizationMembership] = None,
    ):
        self.store = store or PolicyStore()
        self.membership = membership or SqlOrganizationMembership()

    async def can_access(
        self,
        db: AsyncSession,
        viewer_id: Optional[int],
        node_id,
        action: PermissionAction = PermissionAction.VIEW,
        level: VisibilityLevel = VisibilityLevel.OVERVIEW,
    ) -> bool:
        """
        Check access for one viewer on one node

        Args:
            db: Database session
            viewer_id: Viewer user id, None for anonymous callers
            node_id: Node UUID
            action: Gated operation
            level: Requested visibility level

        Returns:
            True if access is granted. A node that does not exist yields False.

        Raises:
            ValidationException: If node_id or viewer_id is malformed
        """
        node_uuid = validate_node_id(node_id)
        validate_user_id(viewer_id, allow_anonymous=True)
        action = PermissionAction(action)
        level = VisibilityLevel(level)

        async with track_permission_operation(
            "can_access",
            settings.PERMISSION_SLOW_CHECK_MS,
            user_id=viewer_id,
            node_id=node_uuid,
        ):
            if viewer_id is not None and await self.store.is_node_owner(db, viewer_id, node_uuid):
                allowed = True
            else:
                policies = await self.store.get_policies_for_node(db, node_uuid)
                viewer = await self._viewer_context(db, viewer_id, policies, action)
                allowed = evaluate_policies(
                    [policy.to_rule() for policy in policies],
                    viewer,
                    action,
                    level,
                )

        record_permission_decision("can_access", allowed)
        if not allowed and viewer_id is not None:
            logger.debug(
                f"Access denied: user {viewer_id} node {node_uuid} "
                f"action={action.value} level={level.value}"
            )
        return allowed

    async def get_access_level(
        self,
        db: AsyncSession,
        viewer_id: Optional[int],
        node_id,
        action: PermissionAction = PermissionAction.VIEW,
    ) -> Optional[VisibilityLevel]:
        """Highest level granted to the viewer, or None"""
        node_uuid = validate_node_id(node_id)
        validate_user_id(viewer_id, allow_anonymous=True)
        action = PermissionAction(action)

        async with track_permission_operation(
            "get_access_level",
            settings.PERMISSION_SLOW_CHECK_MS,
            user_id=viewer_id,
            node_id=node_uuid,
        ):
            if viewer_id is not None and await self.store.is_node_owner(db, viewer_id, node_uuid):
                return VisibilityLevel.FULL

            policies = await self.store.get_policies_for_node(db, node_uuid)
            viewer = await self._viewer_context(db, viewer_id, policies, action)
            return resolve_access_level(
                [policy.to_rule() for policy in policies],
                viewer,
                action,
            )

    async def can_edit(self, db: AsyncSession, viewer_id: Optional[int], node_id) -> bool:
        """Owner, or an ``edit`` grant at ``full`` level"""
        return await self.can_access(
            db, viewer_id, node_id, PermissionAction.EDIT, VisibilityLevel.FULL
        )

    async def _viewer_context(
        self,
        db: AsyncSession,
        viewer_id: Optional[int],
        policies: List[NodePolicy],
        action: PermissionAction,
    ) -> ViewerContext:
        """Viewer identity with memberships of the organizations named on the node"""
        if viewer_id is None:
            return ViewerContext()

        organization_ids = {
            policy.subject_id
            for policy in policies
            if policy.action == action and isinstance(policy.subject, OrganizationSubject)
        }

        member_of = set()
        for organization_id in sorted(organization_ids):
            if await self.membership.is_member(db, viewer_id, organization_id):
                member_of.add(organization_id)

        return ViewerContext(viewer_id=viewer_id, organization_ids=frozenset(member_of))
