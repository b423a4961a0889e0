"""
Pytest Configuration and Fixtures
Shared fixtures and configuration for all tests
"""

import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-timeline-service-0123456789")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import uuid
from typing import AsyncGenerator, Iterable, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from timeline_backend.db.base import Base
from timeline_backend.db.models import Organization, OrgMember, TimelineNode, User
from timeline_backend.models.permission import NodePolicy  # noqa: F401
from timeline_backend.services.permissions import PermissionService


# ============================================
# PYTEST CONFIGURATION
# ============================================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests (fast, isolated)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests against an in-memory database"
    )
    config.addinivalue_line(
        "markers", "slow: Slow running tests"
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add default markers"""
    for item in items:
        # Add markers based on test file path
        path = str(item.fspath).replace(os.sep, "/")
        if "/unit/" in path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in path:
            item.add_marker(pytest.mark.integration)


# ============================================
# DATABASE FIXTURES
# ============================================

@pytest_asyncio.fixture
async def db_engine():
    """In-memory SQLite engine with all tables created"""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Test database session"""
    session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_maker() as session:
        yield session


@pytest.fixture
def permission_service() -> PermissionService:
    """Permission engine wired to the SQL collaborators"""
    return PermissionService()


# ============================================
# DATA FIXTURES
# ============================================

@pytest.fixture
def make_user(db_session):
    """Factory creating a user with an explicit id"""
    async def _make_user(user_id: int, user_name: Optional[str] = None) -> User:
        user = User(
            id=user_id,
            email=f"user{user_id}@example.com",
            user_name=user_name or f"user{user_id}",
            first_name="Test",
            last_name=f"User{user_id}",
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def make_node(db_session):
    """Factory creating a timeline node"""
    async def _make_node(
        owner_id: int,
        node_type: str = "job",
        title: Optional[str] = None,
        parent: Optional[TimelineNode] = None,
    ) -> TimelineNode:
        node = TimelineNode(
            id=uuid.uuid4(),
            type=node_type,
            user_id=owner_id,
            parent_id=parent.id if parent is not None else None,
            meta={"title": title or f"{node_type} node"},
        )
        db_session.add(node)
        await db_session.commit()
        return node

    return _make_node


@pytest.fixture
def make_org(db_session):
    """Factory creating an organization with members"""
    async def _make_org(org_id: int, member_ids: Iterable[int] = ()) -> Organization:
        org = Organization(id=org_id, name=f"Org {org_id}", type="company")
        db_session.add(org)
        for member_id in member_ids:
            db_session.add(OrgMember(org_id=org_id, user_id=member_id))
        await db_session.commit()
        return org

    return _make_org
