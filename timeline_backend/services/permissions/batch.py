"""
Batch Resolver
Access decisions for many nodes with a fixed number of queries

Each operation issues the same handful of queries per chunk of
``PERMISSION_BATCH_CHUNK_SIZE`` node ids:

    1. owners of the requested nodes (one ``IN`` query)
    2. the viewer's organization memberships (once per call)
    3. candidate policies for the viewer (one ``IN`` query, subject-filtered)

Decisions are then made in memory with the same rule function the single
evaluator uses.
"""

import uuid
from typing import Dict, Iterator, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.core.config import settings
from timeline_backend.core.logging import get_logger
from timeline_backend.core.permissions import (
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
    HierarchyRepository,
    OrganizationMembership,
    SqlHierarchyRepository,
    SqlOrganizationMembership,
)
from timeline_backend.services.permissions.models import (
    AccessibleNode,
    BatchAuthorizationResult,
    NodeAccessCheck,
)
from timeline_backend.services.permissions.store import (
    PolicyStore,
    validate_node_id,
    validate_user_id,
)

logger = get_logger(__name__)


def dedupe_node_ids(node_ids: Sequence) -> List[uuid.UUID]:
    """Validate and de-duplicate node ids preserving first-seen order"""
    seen = set()
    unique: List[uuid.UUID] = []
    for node_id in node_ids:
        node_uuid = validate_node_id(node_id)
        if node_uuid not in seen:
            seen.add(node_uuid)
            unique.append(node_uuid)
    return unique


def preview_node_ids(node_ids: List[uuid.UUID], limit: int = 5) -> str:
    """Short node id list for log lines"""
    shown = ",".join(str(node_id) for node_id in node_ids[:limit])
    if len(node_ids) > limit:
        shown += f",...(+{len(node_ids) - limit})"
    return shown


def chunk_node_ids(node_ids: List[uuid.UUID]) -> Iterator[List[uuid.UUID]]:
    """Split node ids into slices of at most ``PERMISSION_BATCH_CHUNK_SIZE``"""
    size = settings.PERMISSION_BATCH_CHUNK_SIZE
    for start in range(0, len(node_ids), size):
        yield node_ids[start:start + size]


class BatchResolver:
    """Resolves access for one viewer across many nodes"""

    def __init__(
        self,
        store: Optional[PolicyStore] = None,
        hierarchy: Optional[HierarchyRepository] = None,
        membership: Optional[OrganizationMembership] = None,
    ):
        self.hierarchy = hierarchy or SqlHierarchyRepository()
        self.store = store or PolicyStore(hierarchy=self.hierarchy)
        self.membership = membership or SqlOrganizationMembership()

    async def get_accessible_nodes(
        self,
        db: AsyncSession,
        viewer_id: Optional[int],
        action: PermissionAction = PermissionAction.VIEW,
        min_level: VisibilityLevel = VisibilityLevel.OVERVIEW,
    ) -> List[AccessibleNode]:
        """
        Every node the viewer may access at or above ``min_level``

        Owned nodes come back at ``full`` with ``can_edit=True``. Other nodes
        come from the viewer's candidate policies across the whole system.
        """
        validate_user_id(viewer_id, allow_anonymous=True)
        action = PermissionAction(action)
        min_level = VisibilityLevel(min_level)

        async with track_permission_operation(
            "get_accessible_nodes",
            settings.PERMISSION_SLOW_BATCH_MS,
            user_id=viewer_id,
        ):
            owned: List[uuid.UUID] = []
            if viewer_id is not None:
                owned = await self.hierarchy.get_owned_node_ids(db, viewer_id)

            viewer = await self._viewer_context(db, viewer_id)
            candidates = await self.store.get_candidate_policies(db, viewer, action)
            edit_candidates = await self._edit_candidates(db, viewer, action, candidates)

            owned_set = set(owned)
            accessible = [
                AccessibleNode(node_id=node_id, access_level=VisibilityLevel.FULL, can_edit=True)
                for node_id in owned
            ]
            for node_id, policies in candidates.items():
                if node_id in owned_set:
                    continue
                level = resolve_access_level([p.to_rule() for p in policies], viewer, action)
                if level is None or level.rank < min_level.rank:
                    continue
                accessible.append(
                    AccessibleNode(
                        node_id=node_id,
                        access_level=level,
                        can_edit=evaluate_policies(
                            [p.to_rule() for p in edit_candidates.get(node_id, [])],
                            viewer,
                            PermissionAction.EDIT,
                            VisibilityLevel.FULL,
                        ),
                    )
                )

        logger.debug(
            f"User {viewer_id} can access {len(accessible)} nodes "
            f"(action={action.value}, min_level={min_level.value})"
        )
        return accessible

    async def check_batch_authorization(
        self,
        db: AsyncSession,
        requesting_user_id: Optional[int],
        node_ids: Sequence,
        target_user_id: Optional[int] = None,
        action: PermissionAction = PermissionAction.VIEW,
        level: VisibilityLevel = VisibilityLevel.OVERVIEW,
    ) -> BatchAuthorizationResult:
        """
        Partition node ids into authorized, unauthorized and not found

        A node that does not exist, or is not owned by the target user, is
        reported as not found. Every de-duplicated input id lands in exactly
        one bucket.
        """
        if not node_ids:
            return BatchAuthorizationResult()

        validate_user_id(requesting_user_id, allow_anonymous=True)
        if target_user_id is None:
            target_user_id = requesting_user_id
        validate_user_id(target_user_id, allow_anonymous=True)
        unique_ids = dedupe_node_ids(node_ids)
        action = PermissionAction(action)
        level = VisibilityLevel(level)

        result = BatchAuthorizationResult()
        async with track_permission_operation(
            "check_batch_authorization",
            settings.PERMISSION_SLOW_BATCH_MS,
            batch_size=len(unique_ids),
            user_id=requesting_user_id,
            target_user_id=target_user_id,
            node_ids=preview_node_ids(unique_ids),
        ):
            owners = await self._get_node_owners(db, unique_ids)
            decisions = await self._resolve(db, requesting_user_id, unique_ids, owners, action, level)

            for node_id in unique_ids:
                owner_id = owners.get(node_id)
                if owner_id is None or target_user_id is None or owner_id != target_user_id:
                    result.not_found.append(node_id)
                elif decisions[node_id]:
                    result.authorized.append(node_id)
                else:
                    result.unauthorized.append(node_id)

        logger.debug(
            f"Batch authorization for user {requesting_user_id} (target {target_user_id}): "
            f"{len(result.authorized)} authorized, {len(result.unauthorized)} unauthorized, "
            f"{len(result.not_found)} not found"
        )
        return result

    async def batch_check_access(
        self,
        db: AsyncSession,
        viewer_id: Optional[int],
        node_ids: Sequence,
        action: PermissionAction = PermissionAction.VIEW,
        level: VisibilityLevel = VisibilityLevel.OVERVIEW,
    ) -> List[NodeAccessCheck]:
        """Boolean access per node in input order (duplicates collapsed)"""
        if not node_ids:
            return []

        validate_user_id(viewer_id, allow_anonymous=True)
        unique_ids = dedupe_node_ids(node_ids)
        action = PermissionAction(action)
        level = VisibilityLevel(level)

        async with track_permission_operation(
            "batch_check_access",
            settings.PERMISSION_SLOW_BATCH_MS,
            batch_size=len(unique_ids),
            user_id=viewer_id,
            node_ids=preview_node_ids(unique_ids),
        ):
            owners = await self._get_node_owners(db, unique_ids)
            decisions = await self._resolve(db, viewer_id, unique_ids, owners, action, level)

        return [
            NodeAccessCheck(node_id=node_id, can_access=decisions[node_id])
            for node_id in unique_ids
        ]

    async def get_access_levels(
        self,
        db: AsyncSession,
        viewer_id: Optional[int],
        node_ids: Sequence,
        action: PermissionAction = PermissionAction.VIEW,
    ) -> Dict[uuid.UUID, Optional[VisibilityLevel]]:
        """Highest granted level per node, None where nothing is granted"""
        if not node_ids:
            return {}

        validate_user_id(viewer_id, allow_anonymous=True)
        unique_ids = dedupe_node_ids(node_ids)
        action = PermissionAction(action)

        async with track_permission_operation(
            "get_access_levels",
            settings.PERMISSION_SLOW_BATCH_MS,
            batch_size=len(unique_ids),
            user_id=viewer_id,
            node_ids=preview_node_ids(unique_ids),
        ):
            owners = await self._get_node_owners(db, unique_ids)
            viewer = await self._viewer_context(db, viewer_id)
            foreign = [node_id for node_id in unique_ids if not self._owns(viewer_id, owners, node_id)]
            candidates = await self._get_candidates(db, viewer, action, foreign)

            levels: Dict[uuid.UUID, Optional[VisibilityLevel]] = {}
            for node_id in unique_ids:
                if self._owns(viewer_id, owners, node_id):
                    levels[node_id] = VisibilityLevel.FULL
                else:
                    levels[node_id] = resolve_access_level(
                        [p.to_rule() for p in candidates.get(node_id, [])], viewer, action
                    )
        return levels

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _resolve(
        self,
        db: AsyncSession,
        viewer_id: Optional[int],
        node_ids: List[uuid.UUID],
        owners: Dict[uuid.UUID, int],
        action: PermissionAction,
        level: VisibilityLevel,
    ) -> Dict[uuid.UUID, bool]:
        viewer = await self._viewer_context(db, viewer_id)
        foreign = [node_id for node_id in node_ids if not self._owns(viewer_id, owners, node_id)]
        candidates = await self._get_candidates(db, viewer, action, foreign)

        decisions: Dict[uuid.UUID, bool] = {}
        for node_id in node_ids:
            if self._owns(viewer_id, owners, node_id):
                allowed = True
            else:
                allowed = evaluate_policies(
                    [p.to_rule() for p in candidates.get(node_id, [])], viewer, action, level
                )
            decisions[node_id] = allowed
            record_permission_decision("batch", allowed)
        return decisions

    async def _viewer_context(self, db: AsyncSession, viewer_id: Optional[int]) -> ViewerContext:
        if viewer_id is None:
            return ViewerContext()
        organization_ids = await self.membership.get_user_organization_ids(db, viewer_id)
        return ViewerContext(viewer_id=viewer_id, organization_ids=frozenset(organization_ids))

    async def _edit_candidates(
        self,
        db: AsyncSession,
        viewer: ViewerContext,
        action: PermissionAction,
        candidates: Dict[uuid.UUID, List[NodePolicy]],
    ) -> Dict[uuid.UUID, List[NodePolicy]]:
        if action == PermissionAction.EDIT:
            return candidates
        if viewer.is_anonymous or not candidates:
            return {}
        return await self._get_candidates(db, viewer, PermissionAction.EDIT, list(candidates))

    @staticmethod
    def _owns(viewer_id: Optional[int], owners: Dict[uuid.UUID, int], node_id: uuid.UUID) -> bool:
        return viewer_id is not None and owners.get(node_id) == viewer_id

    async def _get_node_owners(
        self, db: AsyncSession, node_ids: List[uuid.UUID]
    ) -> Dict[uuid.UUID, int]:
        owners: Dict[uuid.UUID, int] = {}
        for chunk in chunk_node_ids(node_ids):
            owners.update(await self.hierarchy.get_node_owners(db, chunk))
        return owners

    async def _get_candidates(
        self,
        db: AsyncSession,
        viewer: ViewerContext,
        action: PermissionAction,
        node_ids: List[uuid.UUID],
    ) -> Dict[uuid.UUID, List[NodePolicy]]:
        candidates: Dict[uuid.UUID, List[NodePolicy]] = {}
        for chunk in chunk_node_ids(node_ids):
            candidates.update(await self.store.get_candidate_policies(db, viewer, action, chunk))
        return candidates
