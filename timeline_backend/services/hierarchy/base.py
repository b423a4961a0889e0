"""
Hierarchy Interfaces
Narrow views of the node hierarchy, organization and user components

The permission engine depends only on these calls. Each method receives the
request-scoped session explicitly.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.db.models import TimelineNode, User
from timeline_backend.services.hierarchy.models import NodeFilter


class HierarchyRepository(ABC):
    """Read access to timeline nodes"""

    @abstractmethod
    async def get_node_owner(self, db: AsyncSession, node_id: uuid.UUID) -> Optional[int]:
        """Owner user id, or None if the node does not exist"""

    @abstractmethod
    async def get_node_owners(
        self, db: AsyncSession, node_ids: Iterable[uuid.UUID]
    ) -> Dict[uuid.UUID, int]:
        """Owner user id per existing node; missing nodes are omitted"""

    @abstractmethod
    async def get_by_id(
        self, db: AsyncSession, node_id: uuid.UUID, context_user_id: int
    ) -> Optional[TimelineNode]:
        """Node owned by ``context_user_id``, or None"""

    @abstractmethod
    async def get_by_ids(
        self, db: AsyncSession, node_ids: Iterable[uuid.UUID], context_user_id: int
    ) -> Dict[uuid.UUID, TimelineNode]:
        """Nodes owned by ``context_user_id`` keyed by id"""

    @abstractmethod
    async def get_all_nodes(self, db: AsyncSession, node_filter: NodeFilter) -> List[TimelineNode]:
        """Candidate nodes of ``node_filter.target_user_id``"""

    @abstractmethod
    async def get_owned_node_ids(self, db: AsyncSession, user_id: int) -> List[uuid.UUID]:
        """Ids of every node owned by ``user_id``"""


class OrganizationMembership(ABC):
    """Organization membership lookups"""

    @abstractmethod
    async def is_member(self, db: AsyncSession, user_id: int, organization_id: int) -> bool:
        """Whether ``user_id`` currently belongs to ``organization_id``"""

    @abstractmethod
    async def get_user_organization_ids(self, db: AsyncSession, user_id: int) -> Set[int]:
        """All organizations ``user_id`` currently belongs to"""


class UserDirectory(ABC):
    """Username resolution"""

    @abstractmethod
    async def get_user_by_username(self, db: AsyncSession, username: str) -> Optional[User]:
        """User with ``username``, or None"""

    @abstractmethod
    async def get_users_by_ids(self, db: AsyncSession, user_ids: Iterable[int]) -> Dict[int, User]:
        """Users keyed by id; unknown ids are left out"""
