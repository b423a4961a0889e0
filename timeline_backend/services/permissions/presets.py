"""
Permission Presets
Common sharing configurations expressed as policy specs
"""

from typing import List

from timeline_backend.core.permissions import (
    PermissionAction,
    PolicyEffect,
    SubjectType,
    VisibilityLevel,
)
from timeline_backend.services.permissions.models import PolicySpec


def public_overview() -> List[PolicySpec]:
    """Anyone, including anonymous viewers, sees the overview"""
    return [
        PolicySpec(
            subject_type=SubjectType.PUBLIC,
            action=PermissionAction.VIEW,
            level=VisibilityLevel.OVERVIEW,
            effect=PolicyEffect.ALLOW,
        )
    ]


def public_full() -> List[PolicySpec]:
    """Anyone sees full detail"""
    return [
        PolicySpec(
            subject_type=SubjectType.PUBLIC,
            action=PermissionAction.VIEW,
            level=VisibilityLevel.FULL,
            effect=PolicyEffect.ALLOW,
        )
    ]


def org_viewable(organization_id: int) -> List[PolicySpec]:
    """Members of one organization see full detail"""
    return [
        PolicySpec(
            subject_type=SubjectType.ORGANIZATION,
            subject_id=organization_id,
            action=PermissionAction.VIEW,
            level=VisibilityLevel.FULL,
            effect=PolicyEffect.ALLOW,
        )
    ]


def private() -> List[PolicySpec]:
    """Owner only"""
    return []


PRESETS = {
    "public_overview": public_overview,
    "public_full": public_full,
    "private": private,
}
