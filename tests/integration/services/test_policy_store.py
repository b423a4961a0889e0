#!/usr/bin/env python3
"""
Integration Tests for the Policy Store
Tests for timeline_backend/services/permissions/store.py
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from timeline_backend.core.exceptions import (
    AuthorizationException,
    NotFoundException,
    ValidationException,
)
from timeline_backend.core.permissions import (
    PermissionAction,
    PolicyEffect,
    SubjectType,
    ViewerContext,
    VisibilityLevel,
)
from timeline_backend.models.permission import NodePolicy
from timeline_backend.services.permissions import PolicySpec, PolicyUpdate

OVERVIEW = VisibilityLevel.OVERVIEW
FULL = VisibilityLevel.FULL


def spec(subject_type, subject_id=None, level=OVERVIEW, **kwargs) -> PolicySpec:
    return PolicySpec(subject_type=subject_type, subject_id=subject_id, level=level, **kwargs)


@pytest_asyncio.fixture
async def owner_and_node(make_user, make_node):
    await make_user(1)
    await make_user(2)
    node = await make_node(1)
    return 1, node


@pytest.mark.integration
class TestReplacePolicies:
    """Test atomic replace"""

    @pytest.mark.asyncio
    async def test_replace_inserts(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store

        rows = await store.replace_policies(
            db_session, node.id, owner_id, [spec(SubjectType.PUBLIC), spec(SubjectType.USER, 2, FULL)]
        )

        assert len(rows) == 2
        policies = await store.get_policies_for_node(db_session, str(node.id))
        assert {(p.subject_type, p.subject_id, p.level) for p in policies} == {
            (SubjectType.PUBLIC, None, OVERVIEW),
            (SubjectType.USER, 2, FULL),
        }
        assert all(p.granted_by == owner_id for p in policies)

    @pytest.mark.asyncio
    async def test_replace_removes_previous(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store

        await store.replace_policies(db_session, node.id, owner_id, [spec(SubjectType.PUBLIC)])
        await store.replace_policies(db_session, node.id, owner_id, [spec(SubjectType.USER, 2)])

        policies = await store.get_policies_for_node(db_session, node.id)
        assert [p.subject_type for p in policies] == [SubjectType.USER]

    @pytest.mark.asyncio
    async def test_replace_with_empty_list(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store

        await store.replace_policies(db_session, node.id, owner_id, [spec(SubjectType.PUBLIC)])
        await store.replace_policies(db_session, node.id, owner_id, [])

        assert await store.get_policies_for_node(db_session, node.id) == []

    @pytest.mark.asyncio
    async def test_failed_replace_keeps_old_set(self, db_session, permission_service, owner_and_node):
        """Test a failing insert rolls back the delete too"""
        owner_id, node = owner_and_node
        node_id = node.id
        store = permission_service.store
        await store.replace_policies(db_session, node_id, owner_id, [spec(SubjectType.PUBLIC)])

        duplicate = [spec(SubjectType.USER, 2, FULL), spec(SubjectType.USER, 2, FULL)]
        with pytest.raises(IntegrityError):
            await store.replace_policies(db_session, node_id, owner_id, duplicate)

        policies = await store.get_policies_for_node(db_session, node_id)
        assert [(p.subject_type, p.level) for p in policies] == [(SubjectType.PUBLIC, OVERVIEW)]

    @pytest.mark.asyncio
    async def test_other_nodes_untouched(self, db_session, permission_service, owner_and_node, make_node):
        owner_id, node = owner_and_node
        other = await make_node(owner_id)
        store = permission_service.store

        await store.replace_policies(db_session, other.id, owner_id, [spec(SubjectType.PUBLIC)])
        await store.replace_policies(db_session, node.id, owner_id, [])

        assert len(await store.get_policies_for_node(db_session, other.id)) == 1


@pytest.mark.integration
class TestReplacePoliciesForSubjects:
    """Test selective replace across nodes"""

    @pytest.mark.asyncio
    async def test_untouched_subjects_preserved(self, db_session, permission_service, owner_and_node, make_node):
        owner_id, node = owner_and_node
        second = await make_node(owner_id)
        store = permission_service.store

        await store.replace_policies(
            db_session, node.id, owner_id, [spec(SubjectType.PUBLIC), spec(SubjectType.USER, 2)]
        )

        await store.replace_policies_for_subjects(
            db_session,
            owner_id,
            [
                spec(SubjectType.USER, 2, FULL, node_id=node.id),
                spec(SubjectType.USER, 2, FULL, node_id=second.id),
            ],
        )

        first_policies = await store.get_policies_for_node(db_session, node.id)
        assert {(p.subject_type, p.level) for p in first_policies} == {
            (SubjectType.PUBLIC, OVERVIEW),
            (SubjectType.USER, FULL),
        }
        second_policies = await store.get_policies_for_node(db_session, second.id)
        assert [(p.subject_id, p.level) for p in second_policies] == [(2, FULL)]

    @pytest.mark.asyncio
    async def test_missing_node_id(self, db_session, permission_service):
        with pytest.raises(ValidationException) as exc_info:
            await permission_service.store.replace_policies_for_subjects(
                db_session, 1, [spec(SubjectType.PUBLIC)]
            )
        assert exc_info.value.message == "Policy node ID is required"


@pytest.mark.integration
class TestReads:
    """Test read paths"""

    @pytest.mark.asyncio
    async def test_ordered_by_created_at(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        base = datetime(2026, 1, 1, tzinfo=timezone.utc)
        for offset, user_id in [(2, 5), (0, 3), (1, 4)]:
            db_session.add(
                NodePolicy(
                    node_id=node.id,
                    subject_type=SubjectType.USER,
                    subject_id=user_id,
                    action=PermissionAction.VIEW,
                    level=OVERVIEW,
                    effect=PolicyEffect.ALLOW,
                    granted_by=owner_id,
                    created_at=base + timedelta(minutes=offset),
                )
            )
        await db_session.commit()

        policies = await permission_service.store.get_policies_for_node(db_session, node.id)
        assert [p.subject_id for p in policies] == [3, 4, 5]

    @pytest.mark.asyncio
    async def test_expired_hidden(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        await permission_service.store.replace_policies(
            db_session, node.id, owner_id, [spec(SubjectType.PUBLIC, expires_at=past)]
        )

        assert await permission_service.store.get_policies_for_node(db_session, node.id) == []

    @pytest.mark.asyncio
    async def test_unknown_node_empty(self, db_session, permission_service):
        assert await permission_service.store.get_policies_for_node(db_session, uuid.uuid4()) == []

    @pytest.mark.asyncio
    async def test_is_node_owner(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store

        assert await store.is_node_owner(db_session, owner_id, node.id)
        assert not await store.is_node_owner(db_session, 2, node.id)
        assert not await store.is_node_owner(db_session, None, node.id)
        assert not await store.is_node_owner(db_session, owner_id, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_candidate_policies_filtered_by_subject(
        self, db_session, permission_service, owner_and_node
    ):
        owner_id, node = owner_and_node
        store = permission_service.store
        await store.replace_policies(
            db_session,
            node.id,
            owner_id,
            [
                spec(SubjectType.PUBLIC),
                spec(SubjectType.USER, 2),
                spec(SubjectType.USER, 3),
                spec(SubjectType.ORGANIZATION, 7),
                spec(SubjectType.ORGANIZATION, 8),
            ],
        )

        viewer = ViewerContext(viewer_id=2, organization_ids=frozenset({7}))
        candidates = await store.get_candidate_policies(db_session, viewer)
        assert {(p.subject_type, p.subject_id) for p in candidates[node.id]} == {
            (SubjectType.PUBLIC, None),
            (SubjectType.USER, 2),
            (SubjectType.ORGANIZATION, 7),
        }

        anonymous = await store.get_candidate_policies(db_session, ViewerContext(), node_ids=[node.id])
        assert [p.subject_type for p in anonymous[node.id]] == [SubjectType.PUBLIC]

    @pytest.mark.asyncio
    async def test_effective_permissions(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        past = datetime.now(timezone.utc) - timedelta(minutes=5)
        await permission_service.store.replace_policies(
            db_session,
            node.id,
            owner_id,
            [
                spec(SubjectType.PUBLIC),
                spec(SubjectType.PUBLIC, level=FULL),
                spec(SubjectType.ORGANIZATION, 7),
                spec(SubjectType.USER, 2, FULL, action=PermissionAction.EDIT),
                spec(SubjectType.USER, 3, FULL, effect=PolicyEffect.DENY),
                spec(SubjectType.USER, 4, FULL, expires_at=past),
                spec(SubjectType.USER, 5, OVERVIEW),
            ],
        )

        effective = await permission_service.store.get_effective_permissions(db_session, node.id)

        assert effective.node_id == node.id
        assert effective.public == FULL
        assert [(o.organization_id, o.level) for o in effective.organizations] == [(7, OVERVIEW)]
        assert [(u.user_id, u.level) for u in effective.users] == [(5, OVERVIEW)]


@pytest.mark.integration
class TestSinglePolicyMutations:
    """Test ownership-checked delete and update"""

    @pytest.mark.asyncio
    async def test_delete_by_owner(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store
        rows = await store.replace_policies(db_session, node.id, owner_id, [spec(SubjectType.PUBLIC)])

        await store.delete_policy(db_session, str(rows[0].id), owner_id)

        assert await store.get_policy(db_session, rows[0].id) is None

    @pytest.mark.asyncio
    async def test_delete_by_non_owner(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store
        rows = await store.replace_policies(db_session, node.id, owner_id, [spec(SubjectType.PUBLIC)])

        with pytest.raises(AuthorizationException) as exc_info:
            await store.delete_policy(db_session, rows[0].id, 2)

        assert exc_info.value.message == "Only node owner can delete policies"
        assert await store.get_policy(db_session, rows[0].id) is not None

    @pytest.mark.asyncio
    async def test_delete_missing(self, db_session, permission_service, owner_and_node):
        with pytest.raises(NotFoundException):
            await permission_service.store.delete_policy(db_session, uuid.uuid4(), 1)

    @pytest.mark.asyncio
    async def test_update_only_supplied_fields(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store
        rows = await store.replace_policies(db_session, node.id, owner_id, [spec(SubjectType.USER, 2)])

        updated = await store.update_policy(db_session, rows[0].id, PolicyUpdate(level=FULL), owner_id)

        assert updated.level == FULL
        assert updated.effect == PolicyEffect.ALLOW
        assert updated.action == PermissionAction.VIEW
        assert updated.subject_id == 2

    @pytest.mark.asyncio
    async def test_update_by_non_owner(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store
        rows = await store.replace_policies(db_session, node.id, owner_id, [spec(SubjectType.USER, 2)])

        with pytest.raises(AuthorizationException) as exc_info:
            await store.update_policy(db_session, rows[0].id, PolicyUpdate(level=FULL), 2)
        assert exc_info.value.message == "Only node owner can update policies"

    @pytest.mark.asyncio
    async def test_update_conflict(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store
        rows = await store.replace_policies(
            db_session, node.id, owner_id, [spec(SubjectType.USER, 2), spec(SubjectType.USER, 2, FULL)]
        )
        overview_row = next(r for r in rows if r.level == OVERVIEW)

        with pytest.raises(ValidationException) as exc_info:
            await store.update_policy(db_session, overview_row.id, PolicyUpdate(level=FULL), owner_id)
        assert exc_info.value.message == "Policy conflicts with an existing policy on this node"


@pytest.mark.integration
class TestCleanup:
    """Test the expired policy sweep"""

    @pytest.mark.asyncio
    async def test_removes_only_expired(self, db_session, permission_service, owner_and_node):
        owner_id, node = owner_and_node
        store = permission_service.store
        now = datetime.now(timezone.utc)
        await store.replace_policies(
            db_session,
            node.id,
            owner_id,
            [
                spec(SubjectType.USER, 2, expires_at=now - timedelta(days=1)),
                spec(SubjectType.USER, 3, expires_at=now + timedelta(days=1)),
                spec(SubjectType.PUBLIC),
            ],
        )

        assert await store.cleanup_expired_policies(db_session) == 1
        assert await store.cleanup_expired_policies(db_session) == 0

        count = await db_session.scalar(select(func.count()).select_from(NodePolicy))
        assert count == 2
