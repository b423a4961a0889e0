"""
Hierarchy Repository
SQLAlchemy implementations of the hierarchy, membership and user lookups
"""

import uuid
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.core.logging import get_logger
from timeline_backend.db.models import OrgMember, TimelineNode, User
from timeline_backend.services.hierarchy.base import (
    HierarchyRepository,
    OrganizationMembership,
    UserDirectory,
)
from timeline_backend.services.hierarchy.models import NodeFilter

logger = get_logger(__name__)


class SqlHierarchyRepository(HierarchyRepository):
    """Timeline node lookups backed by the ``timeline_nodes`` table"""

    async def get_node_owner(self, db: AsyncSession, node_id: uuid.UUID) -> Optional[int]:
        result = await db.execute(
            select(TimelineNode.user_id).where(TimelineNode.id == node_id)
        )
        return result.scalar_one_or_none()

    async def get_node_owners(
        self, db: AsyncSession, node_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, int]:
        node_ids = list(node_ids)
        if not node_ids:
            return {}

        result = await db.execute(
            select(TimelineNode.id, TimelineNode.user_id).where(TimelineNode.id.in_(node_ids))
        )
        return {node_id: owner_id for node_id, owner_id in result.all()}

    async def get_by_id(
        self, db: AsyncSession, node_id: uuid.UUID, context_user_id: int
    ) -> Optional[TimelineNode]:
        result = await db.execute(
            select(TimelineNode).where(
                TimelineNode.id == node_id,
                TimelineNode.user_id == context_user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_by_ids(
        self, db: AsyncSession, node_ids: Iterable[uuid.UUID], context_user_id: int
    ) -> Dict[uuid.UUID, TimelineNode]:
        node_ids = list(node_ids)
        if not node_ids:
            return {}

        result = await db.execute(
            select(TimelineNode).where(
                TimelineNode.id.in_(node_ids),
                TimelineNode.user_id == context_user_id,
            )
        )
        return {node.id: node for node in result.scalars().all()}

    async def get_all_nodes(self, db: AsyncSession, node_filter: NodeFilter) -> List[TimelineNode]:
        # Authoritative filtering happens in the permission engine
        result = await db.execute(
            select(TimelineNode)
            .where(TimelineNode.user_id == node_filter.target_user_id)
            .order_by(TimelineNode.created_at, TimelineNode.id)
        )
        nodes = list(result.scalars().all())
        logger.debug(
            f"Fetched {len(nodes)} nodes for user {node_filter.target_user_id}"
        )
        return nodes

    async def get_owned_node_ids(self, db: AsyncSession, user_id: int) -> List[uuid.UUID]:
        result = await db.execute(
            select(TimelineNode.id).where(TimelineNode.user_id == user_id)
        )
        return list(result.scalars().all())


class SqlOrganizationMembership(OrganizationMembership):
    """Membership lookups backed by the ``org_members`` table"""

    async def is_member(self, db: AsyncSession, user_id: int, organization_id: int) -> bool:
        result = await db.execute(
            select(OrgMember.user_id).where(
                OrgMember.user_id == user_id,
                OrgMember.org_id == organization_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def get_user_organization_ids(self, db: AsyncSession, user_id: int) -> Set[int]:
        result = await db.execute(
            select(OrgMember.org_id).where(OrgMember.user_id == user_id)
        )
        return set(result.scalars().all())


class SqlUserDirectory(UserDirectory):
    """Username resolution backed by the ``users`` table"""

    async def get_user_by_username(self, db: AsyncSession, username: str) -> Optional[User]:
        result = await db.execute(select(User).where(User.user_name == username))
        return result.scalar_one_or_none()

    async def get_users_by_ids(self, db: AsyncSession, user_ids: Iterable[int]) -> Dict[int, User]:
        user_ids = sorted(set(user_ids))
        if not user_ids:
            return {}

        result = await db.execute(select(User).where(User.id.in_(user_ids)))
        return {user.id: user for user in result.scalars().all()}
