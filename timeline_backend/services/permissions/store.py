"""
Policy Store
Durable storage and retrieval of node access policies

The store validates identifier formats and keeps writes atomic. Ownership
checks on single-policy mutations live here too, since the policy row is
the only place the owning node can be discovered from a policy id.
"""

import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import and_, delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.core.config import settings
from timeline_backend.core.exceptions import (
    AuthorizationException,
    NotFoundException,
    ValidationException,
)
from timeline_backend.core.logging import get_logger
from timeline_backend.core.permissions import (
    PermissionAction,
    PolicyEffect,
    SubjectType,
    ViewerContext,
    VisibilityLevel,
    as_utc,
    is_valid_node_id,
)
from timeline_backend.models.permission import NodePolicy
from timeline_backend.monitoring.metrics import (
    expired_policies_removed_total,
    policy_writes_total,
    track_permission_operation,
)
from timeline_backend.services.hierarchy import HierarchyRepository, SqlHierarchyRepository
from timeline_backend.services.permissions.models import (
    EffectivePermissions,
    OrganizationAccess,
    PolicySpec,
    PolicyUpdate,
    UserAccess,
)

logger = get_logger(__name__)


def validate_node_id(node_id) -> uuid.UUID:
    """Parse a node id, raising ValidationException on bad format"""
    if not is_valid_node_id(node_id):
        raise ValidationException(
            message="Invalid node ID format",
            details={"node_id": str(node_id)},
        )
    return node_id if isinstance(node_id, uuid.UUID) else uuid.UUID(node_id)


def validate_policy_id(policy_id) -> uuid.UUID:
    """Parse a policy id, raising ValidationException on bad format"""
    if not is_valid_node_id(policy_id):
        raise ValidationException(
            message="Invalid policy ID format",
            details={"policy_id": str(policy_id)},
        )
    return policy_id if isinstance(policy_id, uuid.UUID) else uuid.UUID(policy_id)


def validate_user_id(user_id, allow_anonymous: bool = False) -> Optional[int]:
    """Check a user id is a positive integer (or None when anonymous is allowed)"""
    if user_id is None and allow_anonymous:
        return None
    if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id <= 0:
        raise ValidationException(
            message="Invalid user ID",
            details={"user_id": str(user_id)},
        )
    return user_id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _not_expired(now: datetime):
    return or_(NodePolicy.expires_at.is_(None), NodePolicy.expires_at > now)


def _is_live(policy: NodePolicy, now: datetime) -> bool:
    return policy.expires_at is None or as_utc(policy.expires_at) > now


class PolicyStore:
    """
    Persisted policies per node

    Every method takes the request-scoped ``AsyncSession`` as its first
    argument. Replace operations run delete and insert inside one
    transaction on that session and roll it back on failure.
    """

    def __init__(self, hierarchy: Optional[HierarchyRepository] = None):
        self.hierarchy = hierarchy or SqlHierarchyRepository()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_policies_for_node(self, db: AsyncSession, node_id) -> List[NodePolicy]:
        """Non-expired policies of a node ordered by creation time"""
        node_uuid = validate_node_id(node_id)
        now = utcnow()

        result = await db.execute(
            select(NodePolicy)
            .where(NodePolicy.node_id == node_uuid, _not_expired(now))
            .order_by(NodePolicy.created_at, NodePolicy.id)
        )
        return [policy for policy in result.scalars().all() if _is_live(policy, now)]

    async def get_policy(self, db: AsyncSession, policy_id) -> Optional[NodePolicy]:
        policy_uuid = validate_policy_id(policy_id)
        result = await db.execute(select(NodePolicy).where(NodePolicy.id == policy_uuid))
        return result.scalar_one_or_none()

    async def get_candidate_policies(
        self,
        db: AsyncSession,
        viewer: ViewerContext,
        action: PermissionAction = PermissionAction.VIEW,
        node_ids: Optional[Sequence[uuid.UUID]] = None,
    ) -> Dict[uuid.UUID, List[NodePolicy]]:
        """
        Non-expired policies that may apply to ``viewer``, grouped by node

        Subject filtering happens in SQL: public policies always, user
        policies naming the viewer, organization policies for the viewer's
        organizations. ``node_ids=None`` scans every node.
        """
        now = utcnow()

        subject_clauses = [NodePolicy.subject_type == SubjectType.PUBLIC]
        if not viewer.is_anonymous:
            subject_clauses.append(
                and_(
                    NodePolicy.subject_type == SubjectType.USER,
                    NodePolicy.subject_id == viewer.viewer_id,
                )
            )
            if viewer.organization_ids:
                subject_clauses.append(
                    and_(
                        NodePolicy.subject_type == SubjectType.ORGANIZATION,
                        NodePolicy.subject_id.in_(sorted(viewer.organization_ids)),
                    )
                )

        query = select(NodePolicy).where(
            NodePolicy.action == action,
            _not_expired(now),
            or_(*subject_clauses),
        )
        if node_ids is not None:
            if not node_ids:
                return {}
            query = query.where(NodePolicy.node_id.in_(list(node_ids)))

        result = await db.execute(query.order_by(NodePolicy.created_at, NodePolicy.id))

        grouped: Dict[uuid.UUID, List[NodePolicy]] = {}
        for policy in result.scalars().all():
            if _is_live(policy, now):
                grouped.setdefault(policy.node_id, []).append(policy)
        return grouped

    async def get_policies_for_nodes(
        self, db: AsyncSession, node_ids: Sequence[uuid.UUID]
    ) -> Dict[uuid.UUID, List[NodePolicy]]:
        """All policies (expired included) of several nodes, for administration"""
        if not node_ids:
            return {}

        result = await db.execute(
            select(NodePolicy)
            .where(NodePolicy.node_id.in_(list(node_ids)))
            .order_by(NodePolicy.created_at, NodePolicy.id)
        )
        grouped: Dict[uuid.UUID, List[NodePolicy]] = {node_id: [] for node_id in node_ids}
        for policy in result.scalars().all():
            grouped[policy.node_id].append(policy)
        return grouped

    async def is_node_owner(self, db: AsyncSession, user_id, node_id) -> bool:
        """Whether ``user_id`` owns ``node_id``"""
        node_uuid = validate_node_id(node_id)
        if user_id is None:
            return False
        validate_user_id(user_id)

        owner_id = await self.hierarchy.get_node_owner(db, node_uuid)
        return owner_id is not None and owner_id == user_id

    async def get_effective_permissions(self, db: AsyncSession, node_id) -> EffectivePermissions:
        """Highest ALLOW level per subject among non-expired policies"""
        node_uuid = validate_node_id(node_id)
        policies = await self.get_policies_for_node(db, node_uuid)

        public = None
        organizations: Dict[int, VisibilityLevel] = {}
        users: Dict[int, VisibilityLevel] = {}

        for policy in policies:
            if policy.effect != PolicyEffect.ALLOW or policy.action != PermissionAction.VIEW:
                continue

            if policy.subject_type == SubjectType.PUBLIC:
                if public is None or policy.level.rank > public.rank:
                    public = policy.level
            else:
                bucket = organizations if policy.subject_type == SubjectType.ORGANIZATION else users
                current = bucket.get(policy.subject_id)
                if current is None or policy.level.rank > current.rank:
                    bucket[policy.subject_id] = policy.level

        return EffectivePermissions(
            node_id=node_uuid,
            public=public,
            organizations=[
                OrganizationAccess(organization_id=org_id, level=level)
                for org_id, level in organizations.items()
            ],
            users=[UserAccess(user_id=user_id, level=level) for user_id, level in users.items()],
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def replace_policies(
        self,
        db: AsyncSession,
        node_id,
        granted_by,
        policies: Sequence[PolicySpec],
    ) -> List[NodePolicy]:
        """
        Atomically replace every policy of a node

        An empty ``policies`` list removes all access for non-owners.

        Raises:
            ValidationException: If ``granted_by`` or ``node_id`` is malformed
        """
        validate_user_id(granted_by)
        node_uuid = validate_node_id(node_id)

        async with track_permission_operation(
            "replace_policies",
            settings.PERMISSION_SLOW_CHECK_MS,
            user_id=granted_by,
            node_id=node_uuid,
        ):
            try:
                await db.execute(
                    delete(NodePolicy)
                    .where(NodePolicy.node_id == node_uuid)
                    .execution_options(synchronize_session="fetch")
                )
                rows = [self._build_row(node_uuid, granted_by, spec) for spec in policies]
                db.add_all(rows)
                await db.flush()
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        policy_writes_total.labels(operation="replace").inc()
        logger.info(f"Replaced policies for node {node_uuid}: {len(rows)} policies")
        return rows

    async def replace_policies_for_subjects(
        self,
        db: AsyncSession,
        granted_by,
        policies: Sequence[PolicySpec],
    ) -> List[NodePolicy]:
        """
        Atomically replace policies for the touched (node, subject) pairs only

        Each spec must carry ``node_id``. Policies of other subjects on the
        same nodes are preserved.
        """
        validate_user_id(granted_by)

        pairs: List[Tuple[uuid.UUID, SubjectType, Optional[int]]] = []
        for spec in policies:
            if spec.node_id is None:
                raise ValidationException(message="Policy node ID is required")
            pair = (validate_node_id(spec.node_id), spec.subject_type, spec.subject_id)
            if pair not in pairs:
                pairs.append(pair)

        if not pairs:
            return []

        async with track_permission_operation(
            "replace_policies_for_subjects",
            settings.PERMISSION_SLOW_BATCH_MS,
            batch_size=len(pairs),
            user_id=granted_by,
            node_ids=sorted({str(pair[0]) for pair in pairs}),
        ):
            try:
                await db.execute(
                    delete(NodePolicy)
                    .where(or_(*[self._subject_clause(*pair) for pair in pairs]))
                    .execution_options(synchronize_session="fetch")
                )
                rows = [self._build_row(spec.node_id, granted_by, spec) for spec in policies]
                db.add_all(rows)
                await db.flush()
                await db.commit()
            except Exception:
                await db.rollback()
                raise

        policy_writes_total.labels(operation="replace_for_subjects").inc()
        logger.info(
            f"Replaced policies for {len(pairs)} node subjects by user {granted_by}"
        )
        return rows

    async def delete_policy(self, db: AsyncSession, policy_id, requesting_user_id) -> NodePolicy:
        """
        Delete one policy

        Raises:
            NotFoundException: If the policy does not exist
            AuthorizationException: If the requester does not own the policy's node
        """
        validate_user_id(requesting_user_id)
        policy = await self._get_owned_policy(
            db, policy_id, requesting_user_id, "Only node owner can delete policies"
        )

        try:
            await db.delete(policy)
            await db.flush()
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        policy_writes_total.labels(operation="delete").inc()
        logger.info(f"Policy {policy.id} deleted by user {requesting_user_id}")
        return policy

    async def update_policy(
        self,
        db: AsyncSession,
        policy_id,
        updates: PolicyUpdate,
        requesting_user_id,
    ) -> NodePolicy:
        """
        Apply a partial update to one policy

        Raises:
            NotFoundException: If the policy does not exist
            AuthorizationException: If the requester does not own the policy's node
        """
        policies = await self.update_policies(db, [(policy_id, updates)], requesting_user_id)
        return policies[0]

    async def update_policies(
        self,
        db: AsyncSession,
        updates: Sequence[Tuple[object, PolicyUpdate]],
        requesting_user_id,
    ) -> List[NodePolicy]:
        """Apply several partial updates in one transaction"""
        validate_user_id(requesting_user_id)

        try:
            updated = []
            for policy_id, policy_update in updates:
                policy = await self._get_owned_policy(
                    db, policy_id, requesting_user_id, "Only node owner can update policies"
                )
                for field, value in policy_update.model_dump(exclude_unset=True).items():
                    setattr(policy, field, value)
                updated.append(policy)

            await db.flush()
            await db.commit()
        except IntegrityError as exc:
            await db.rollback()
            raise ValidationException(
                message="Policy conflicts with an existing policy on this node"
            ) from exc
        except Exception:
            await db.rollback()
            raise

        policy_writes_total.labels(operation="update").inc(len(updated))
        logger.info(f"Updated {len(updated)} policies by user {requesting_user_id}")
        return updated

    async def cleanup_expired_policies(self, db: AsyncSession) -> int:
        """Physically remove policies whose expiry has passed"""
        try:
            result = await db.execute(
                delete(NodePolicy)
                .where(
                    NodePolicy.expires_at.is_not(None),
                    NodePolicy.expires_at <= utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        removed = result.rowcount or 0
        expired_policies_removed_total.inc(removed)
        if removed:
            logger.info(f"Removed {removed} expired policies")
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get_owned_policy(
        self,
        db: AsyncSession,
        policy_id,
        requesting_user_id: int,
        denied_message: str,
    ) -> NodePolicy:
        policy = await self.get_policy(db, policy_id)
        if policy is None:
            raise NotFoundException("Policy", details={"policy_id": str(policy_id)})

        owner_id = await self.hierarchy.get_node_owner(db, policy.node_id)
        if owner_id != requesting_user_id:
            raise AuthorizationException(
                message=denied_message,
                details={"policy_id": str(policy.id), "user_id": requesting_user_id},
            )
        return policy

    @staticmethod
    def _subject_clause(node_id: uuid.UUID, subject_type: SubjectType, subject_id: Optional[int]):
        if subject_id is None:
            subject_match = NodePolicy.subject_id.is_(None)
        else:
            subject_match = NodePolicy.subject_id == subject_id
        return and_(
            NodePolicy.node_id == node_id,
            NodePolicy.subject_type == subject_type,
            subject_match,
        )

    @staticmethod
    def _build_row(node_id: uuid.UUID, granted_by: int, spec: PolicySpec) -> NodePolicy:
        return NodePolicy(
            node_id=node_id,
            subject_type=spec.subject_type,
            subject_id=spec.subject_id,
            action=spec.action,
            level=spec.level,
            effect=spec.effect,
            granted_by=granted_by,
            expires_at=spec.expires_at,
        )
