"""
Policy Administration
Owner-only write path into the policy store

Ownership is always re-checked against the hierarchy repository; nothing
supplied by the caller is trusted.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.core.config import settings
from timeline_backend.core.exceptions import (
    AuthorizationException,
    NotFoundException,
    ValidationException,
)
from timeline_backend.core.logging import get_logger
from timeline_backend.core.permissions import (
    OrganizationSubject,
    PermissionAction,
    VisibilityLevel,
    as_utc,
)
from timeline_backend.models.permission import NodePolicy
from timeline_backend.services.hierarchy import (
    HierarchyRepository,
    OrganizationMembership,
    SqlHierarchyRepository,
    SqlOrganizationMembership,
)
from timeline_backend.services.permissions.models import PolicySpec, PolicyUpdate
from timeline_backend.services.permissions.store import (
    PolicyStore,
    validate_node_id,
    validate_user_id,
)

logger = get_logger(__name__)

OWNER_ONLY_MESSAGE = "Only node owner can modify permissions"


def validate_expiry(expires_at: Optional[datetime], now: Optional[datetime] = None) -> None:
    """Expiry must lie in the future and within the configured horizon"""
    if expires_at is None:
        return

    now = now or datetime.now(timezone.utc)
    expires_at = as_utc(expires_at)
    if expires_at <= now:
        raise ValidationException(
            message="Expiration date must be in the future",
            details={"expires_at": expires_at.isoformat()},
        )

    max_days = settings.PERMISSION_MAX_EXPIRY_DAYS
    if expires_at > now + timedelta(days=max_days):
        raise ValidationException(
            message=f"Expiration date cannot be more than {max_days} days in the future",
            details={"expires_at": expires_at.isoformat()},
        )


def validate_action_level(action: PermissionAction, level: VisibilityLevel) -> None:
    if action == PermissionAction.EDIT and level != VisibilityLevel.FULL:
        raise ValidationException(
            message="Edit permissions require Full visibility level",
            details={"action": action.value, "level": level.value},
        )


def validate_policy_specs(specs: Sequence[PolicySpec]) -> None:
    """
    Shape checks that need no storage access

    Raises:
        ValidationException: On count over the cap, inconsistent subjects,
            edit below full, bad expiry or duplicate grants
    """
    max_policies = settings.PERMISSION_MAX_POLICIES_PER_REQUEST
    if len(specs) > max_policies:
        raise ValidationException(
            message=f"Too many policies (max {max_policies})",
            details={"count": len(specs)},
        )

    seen: Set[Tuple] = set()
    now = datetime.now(timezone.utc)
    for index, spec in enumerate(specs):
        try:
            spec.to_subject()
        except ValueError as e:
            raise ValidationException(
                message=str(e),
                details={"index": index, "subject_type": spec.subject_type.value},
            )

        validate_action_level(spec.action, spec.level)
        validate_expiry(spec.expires_at, now)

        key = (spec.node_id, spec.subject_type, spec.subject_id, spec.action, spec.level)
        if key in seen:
            raise ValidationException(
                message="Duplicate policy for the same subject, action and level",
                details={"index": index},
            )
        seen.add(key)


class PolicyAdministration:
    """Owner-gated policy mutations"""

    def __init__(
        self,
        store: Optional[PolicyStore] = None,
        hierarchy: Optional[HierarchyRepository] = None,
        membership: Optional[OrganizationMembership] = None,
    ):
        self.hierarchy = hierarchy or SqlHierarchyRepository()
        self.store = store or PolicyStore(hierarchy=self.hierarchy)
        self.membership = membership or SqlOrganizationMembership()

    async def set_node_permissions(
        self,
        db: AsyncSession,
        node_id,
        requesting_user_id,
        policy_specs: Sequence[PolicySpec],
    ) -> None:
        """
        Replace every policy of a node

        An empty list makes the node private again.

        Raises:
            ValidationException: On malformed ids or policy specs
            AuthorizationException: If the requester does not own the node
        """
        node_uuid = validate_node_id(node_id)
        validate_user_id(requesting_user_id)
        validate_policy_specs(policy_specs)

        await self._require_owner(db, requesting_user_id, node_uuid)
        await self._require_memberships(db, requesting_user_id, policy_specs)

        await self.store.replace_policies(db, node_uuid, requesting_user_id, policy_specs)
        logger.info(
            f"User {requesting_user_id} set {len(policy_specs)} policies on node {node_uuid}"
        )

    async def set_bulk_subject_permissions(
        self,
        db: AsyncSession,
        requesting_user_id,
        policy_specs: Sequence[PolicySpec],
    ) -> None:
        """
        Replace policies for the (node, subject) pairs named in the specs

        Other subjects' policies on the same nodes are kept. The requester
        must own every node involved.
        """
        validate_user_id(requesting_user_id)
        validate_policy_specs(policy_specs)
        if not policy_specs:
            return

        node_ids: List[uuid.UUID] = []
        for spec in policy_specs:
            if spec.node_id is None:
                raise ValidationException(message="Policy node ID is required")
            node_uuid = validate_node_id(spec.node_id)
            if node_uuid not in node_ids:
                node_ids.append(node_uuid)

        owners = await self.hierarchy.get_node_owners(db, node_ids)
        not_owned = [str(n) for n in node_ids if owners.get(n) != requesting_user_id]
        if not_owned:
            raise AuthorizationException(
                message=OWNER_ONLY_MESSAGE,
                details={"node_ids": not_owned},
            )

        await self._require_memberships(db, requesting_user_id, policy_specs)
        await self.store.replace_policies_for_subjects(db, requesting_user_id, policy_specs)
        logger.info(
            f"User {requesting_user_id} set {len(policy_specs)} subject policies "
            f"across {len(node_ids)} nodes"
        )

    async def delete_node_permission(
        self,
        db: AsyncSession,
        node_id,
        policy_id,
        requesting_user_id,
    ) -> None:
        """
        Revoke one policy of a node

        Raises:
            NotFoundException: If the policy does not exist on this node
            AuthorizationException: If the requester does not own the node
        """
        node_uuid = validate_node_id(node_id)
        validate_user_id(requesting_user_id)

        policy = await self.store.get_policy(db, policy_id)
        if policy is None or policy.node_id != node_uuid:
            raise NotFoundException("Policy", details={"policy_id": str(policy_id)})

        await self.store.delete_policy(db, policy.id, requesting_user_id)

    async def update_node_permission(
        self,
        db: AsyncSession,
        policy_id,
        updates: PolicyUpdate,
        requesting_user_id,
    ) -> NodePolicy:
        """Partially update one policy, ownership-checked"""
        updated = await self.bulk_update_policies(db, [(policy_id, updates)], requesting_user_id)
        return updated[0]

    async def bulk_update_policies(
        self,
        db: AsyncSession,
        updates: Sequence[Tuple[object, PolicyUpdate]],
        requesting_user_id,
    ) -> List[NodePolicy]:
        """Apply several partial updates in one transaction"""
        validate_user_id(requesting_user_id)
        max_policies = settings.PERMISSION_MAX_POLICIES_PER_REQUEST
        if len(updates) > max_policies:
            raise ValidationException(
                message=f"Too many policy updates (max {max_policies})",
                details={"count": len(updates)},
            )
        if not updates:
            return []

        for policy_id, policy_update in updates:
            policy = await self.store.get_policy(db, policy_id)
            if policy is None:
                raise NotFoundException("Policy", details={"policy_id": str(policy_id)})
            self._validate_update(policy, policy_update)

        return await self.store.update_policies(db, updates, requesting_user_id)

    async def get_node_policies(
        self,
        db: AsyncSession,
        node_id,
        requesting_user_id,
    ) -> List[NodePolicy]:
        """Non-expired policies of a node; owner only"""
        node_uuid = validate_node_id(node_id)
        validate_user_id(requesting_user_id)

        if not await self.store.is_node_owner(db, requesting_user_id, node_uuid):
            raise AuthorizationException(
                message="Only node owner can view policies",
                details={"node_id": str(node_uuid)},
            )
        return await self.store.get_policies_for_node(db, node_uuid)

    async def get_bulk_node_policies(
        self,
        db: AsyncSession,
        node_ids: Sequence,
        requesting_user_id,
    ) -> Dict[uuid.UUID, List[NodePolicy]]:
        """
        Policies for many nodes

        Nodes the requester does not own, or that do not exist, map to an
        empty list instead of failing the whole request.
        """
        validate_user_id(requesting_user_id)
        unique_ids: List[uuid.UUID] = []
        for node_id in node_ids:
            node_uuid = validate_node_id(node_id)
            if node_uuid not in unique_ids:
                unique_ids.append(node_uuid)

        if len(unique_ids) > settings.PERMISSION_MAX_POLICIES_PER_REQUEST:
            raise ValidationException(
                message=f"Too many node IDs (max {settings.PERMISSION_MAX_POLICIES_PER_REQUEST})",
                details={"count": len(unique_ids)},
            )

        owners = await self.hierarchy.get_node_owners(db, unique_ids)
        owned = [n for n in unique_ids if owners.get(n) == requesting_user_id]
        policies = await self.store.get_policies_for_nodes(db, owned)

        now = datetime.now(timezone.utc)
        result: Dict[uuid.UUID, List[NodePolicy]] = {}
        for node_id in unique_ids:
            result[node_id] = [
                policy
                for policy in policies.get(node_id, [])
                if policy.expires_at is None or as_utc(policy.expires_at) > now
            ]
        return result

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_owner(self, db: AsyncSession, user_id: int, node_id: uuid.UUID) -> None:
        if not await self.store.is_node_owner(db, user_id, node_id):
            logger.warning(
                f"User {user_id} attempted to modify permissions of node {node_id} without ownership"
            )
            raise AuthorizationException(
                message=OWNER_ONLY_MESSAGE,
                details={"node_id": str(node_id), "user_id": user_id},
            )

    async def _require_memberships(
        self,
        db: AsyncSession,
        user_id: int,
        specs: Sequence[PolicySpec],
    ) -> None:
        organization_ids = sorted(
            {
                spec.subject_id
                for spec in specs
                if isinstance(spec.to_subject(), OrganizationSubject)
            }
        )
        for organization_id in organization_ids:
            if not await self.membership.is_member(db, user_id, organization_id):
                raise ValidationException(
                    message=f"You must be a member of organization {organization_id} to share with it",
                    details={"organization_id": organization_id},
                )

    @staticmethod
    def _validate_update(policy: NodePolicy, updates: PolicyUpdate) -> None:
        fields = updates.model_dump(exclude_unset=True)
        for field in ("level", "action", "effect"):
            if field in fields and fields[field] is None:
                raise ValidationException(message=f"Policy {field} cannot be empty")

        action = fields.get("action", policy.action)
        level = fields.get("level", policy.level)
        validate_action_level(PermissionAction(action), VisibilityLevel(level))

        if "expires_at" in fields:
            validate_expiry(fields["expires_at"])
