#!/usr/bin/env python3
"""
Integration Tests for Policy Administration
Tests for timeline_backend/services/permissions/admin.py
"""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from timeline_backend.core.exceptions import (
    AuthorizationException,
    NotFoundException,
    ValidationException,
)
from timeline_backend.core.permissions import PermissionAction, SubjectType, VisibilityLevel
from timeline_backend.services.permissions import PolicySpec, PolicyUpdate
from timeline_backend.services.permissions import presets

OVERVIEW = VisibilityLevel.OVERVIEW
FULL = VisibilityLevel.FULL

OWNER = 1
OTHER = 2


def spec(subject_type, subject_id=None, level=OVERVIEW, **kwargs) -> PolicySpec:
    return PolicySpec(subject_type=subject_type, subject_id=subject_id, level=level, **kwargs)


@pytest_asyncio.fixture
async def nodes(make_user, make_node, make_org):
    """Two nodes of OWNER and one of OTHER; OWNER belongs to org 30"""
    await make_user(OWNER)
    await make_user(OTHER)
    await make_org(30, member_ids=(OWNER,))
    await make_org(31)
    first = await make_node(OWNER)
    second = await make_node(OWNER)
    foreign = await make_node(OTHER)
    return first.id, second.id, foreign.id


@pytest.mark.integration
class TestSetNodePermissions:
    """Test full replace by the owner"""

    @pytest.mark.asyncio
    async def test_share_with_own_organization(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        await permission_service.admin.set_node_permissions(
            db_session, first, OWNER, [spec(SubjectType.ORGANIZATION, 30, FULL)]
        )

        policies = await permission_service.admin.get_node_policies(db_session, first, OWNER)
        assert [(p.subject_type, p.subject_id, p.level) for p in policies] == [
            (SubjectType.ORGANIZATION, 30, FULL)
        ]

    @pytest.mark.asyncio
    async def test_share_with_foreign_organization(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        with pytest.raises(ValidationException) as exc_info:
            await permission_service.admin.set_node_permissions(
                db_session, first, OWNER, [spec(SubjectType.ORGANIZATION, 31)]
            )
        assert exc_info.value.message == "You must be a member of organization 31 to share with it"

    @pytest.mark.asyncio
    async def test_string_node_id(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        await permission_service.admin.set_node_permissions(
            db_session, str(first), OWNER, presets.public_overview()
        )
        assert len(await permission_service.store.get_policies_for_node(db_session, first)) == 1

    @pytest.mark.asyncio
    async def test_unknown_node_is_not_owned(self, db_session, permission_service, nodes):
        with pytest.raises(AuthorizationException):
            await permission_service.admin.set_node_permissions(
                db_session, uuid.uuid4(), OWNER, presets.public_full()
            )

    @pytest.mark.asyncio
    async def test_expiry_validated(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        past = datetime.now(timezone.utc) - timedelta(days=1)
        with pytest.raises(ValidationException):
            await permission_service.admin.set_node_permissions(
                db_session, first, OWNER, [spec(SubjectType.PUBLIC, expires_at=past)]
            )


@pytest.mark.integration
class TestBulkSubjectPermissions:
    """Test selective replace across several nodes"""

    @pytest.mark.asyncio
    async def test_merges_per_subject(self, db_session, permission_service, nodes):
        first, second, _ = nodes
        admin = permission_service.admin
        await admin.set_node_permissions(db_session, first, OWNER, presets.public_overview())

        await admin.set_bulk_subject_permissions(
            db_session,
            OWNER,
            [
                spec(SubjectType.USER, OTHER, FULL, node_id=first),
                spec(SubjectType.USER, OTHER, FULL, node_id=second),
            ],
        )

        first_policies = await admin.get_node_policies(db_session, first, OWNER)
        assert {p.subject_type for p in first_policies} == {SubjectType.PUBLIC, SubjectType.USER}
        second_policies = await admin.get_node_policies(db_session, second, OWNER)
        assert [p.subject_id for p in second_policies] == [OTHER]

    @pytest.mark.asyncio
    async def test_rejects_foreign_node(self, db_session, permission_service, nodes):
        first, _, foreign = nodes
        with pytest.raises(AuthorizationException) as exc_info:
            await permission_service.admin.set_bulk_subject_permissions(
                db_session,
                OWNER,
                [
                    spec(SubjectType.PUBLIC, node_id=first),
                    spec(SubjectType.PUBLIC, node_id=foreign),
                ],
            )

        assert exc_info.value.details["node_ids"] == [str(foreign)]
        assert await permission_service.store.get_policies_for_node(db_session, first) == []


@pytest.mark.integration
class TestDeleteAndUpdate:
    """Test single-policy administration"""

    @pytest.mark.asyncio
    async def test_delete_node_permission(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        admin = permission_service.admin
        await admin.set_node_permissions(db_session, first, OWNER, presets.public_overview())
        policy = (await admin.get_node_policies(db_session, first, OWNER))[0]

        await admin.delete_node_permission(db_session, first, policy.id, OWNER)

        assert await admin.get_node_policies(db_session, first, OWNER) == []
        assert not await permission_service.evaluator.can_access(db_session, None, first)

    @pytest.mark.asyncio
    async def test_delete_policy_of_other_node(self, db_session, permission_service, nodes):
        first, second, _ = nodes
        admin = permission_service.admin
        await admin.set_node_permissions(db_session, first, OWNER, presets.public_overview())
        policy = (await admin.get_node_policies(db_session, first, OWNER))[0]

        with pytest.raises(NotFoundException):
            await admin.delete_node_permission(db_session, second, policy.id, OWNER)

    @pytest.mark.asyncio
    async def test_delete_by_non_owner(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        admin = permission_service.admin
        await admin.set_node_permissions(db_session, first, OWNER, presets.public_overview())
        policy = (await admin.get_node_policies(db_session, first, OWNER))[0]

        with pytest.raises(AuthorizationException):
            await admin.delete_node_permission(db_session, first, policy.id, OTHER)

    @pytest.mark.asyncio
    async def test_update_to_full(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        admin = permission_service.admin
        await admin.set_node_permissions(db_session, first, OWNER, presets.public_overview())
        policy = (await admin.get_node_policies(db_session, first, OWNER))[0]

        updated = await admin.update_node_permission(
            db_session, str(policy.id), PolicyUpdate(level=FULL), OWNER
        )

        assert updated.level == FULL
        assert await permission_service.evaluator.can_access(db_session, None, first, level=FULL)

    @pytest.mark.asyncio
    async def test_update_edit_requires_full(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        admin = permission_service.admin
        await admin.set_node_permissions(db_session, first, OWNER, [spec(SubjectType.USER, OTHER)])
        policy = (await admin.get_node_policies(db_session, first, OWNER))[0]

        with pytest.raises(ValidationException):
            await admin.update_node_permission(
                db_session, policy.id, PolicyUpdate(action=PermissionAction.EDIT), OWNER
            )

    @pytest.mark.asyncio
    async def test_update_missing_policy(self, db_session, permission_service, nodes):
        with pytest.raises(NotFoundException):
            await permission_service.admin.update_node_permission(
                db_session, uuid.uuid4(), PolicyUpdate(level=FULL), OWNER
            )

    @pytest.mark.asyncio
    async def test_bulk_update(self, db_session, permission_service, nodes):
        first, second, _ = nodes
        admin = permission_service.admin
        await admin.set_node_permissions(db_session, first, OWNER, presets.public_overview())
        await admin.set_node_permissions(db_session, second, OWNER, [spec(SubjectType.USER, OTHER)])
        policy_ids = [
            (await admin.get_node_policies(db_session, node_id, OWNER))[0].id
            for node_id in (first, second)
        ]

        updated = await admin.bulk_update_policies(
            db_session,
            [(policy_id, PolicyUpdate(level=FULL)) for policy_id in policy_ids],
            OWNER,
        )

        assert [p.level for p in updated] == [FULL, FULL]


@pytest.mark.integration
class TestPolicyReads:
    """Test owner-only policy listings"""

    @pytest.mark.asyncio
    async def test_non_owner_cannot_list(self, db_session, permission_service, nodes):
        first, _, _ = nodes
        with pytest.raises(AuthorizationException) as exc_info:
            await permission_service.admin.get_node_policies(db_session, first, OTHER)
        assert exc_info.value.message == "Only node owner can view policies"

    @pytest.mark.asyncio
    async def test_bulk_listing(self, db_session, permission_service, nodes):
        first, second, foreign = nodes
        admin = permission_service.admin
        await admin.set_node_permissions(db_session, first, OWNER, presets.public_overview())
        await admin.set_node_permissions(db_session, foreign, OTHER, presets.public_full())

        result = await admin.get_bulk_node_policies(
            db_session, [str(first), second, foreign, first], OWNER
        )

        assert list(result) == [first, second, foreign]
        assert len(result[first]) == 1
        assert result[second] == []
        assert result[foreign] == []
