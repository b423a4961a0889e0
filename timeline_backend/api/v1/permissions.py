"""
Node Permission API Routes
Set, list, update and revoke access policies on timeline nodes
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.api.dependencies import get_current_user_id, get_current_user_id_optional
from timeline_backend.core.exceptions import ValidationException
from timeline_backend.core.logging import get_logger
from timeline_backend.db.session import get_db_session
from timeline_backend.models.common import SuccessResponse
from timeline_backend.models.sharing import (
    BulkNodePoliciesRequest,
    BulkNodePoliciesResponse,
    BulkPolicyUpdateRequest,
    BulkPolicyUpdateResponse,
    BulkSubjectPermissionsRequest,
    NodeAccessResponse,
    NodePoliciesResponse,
    SetPermissionsRequest,
)
from timeline_backend.monitoring import track_request
from timeline_backend.services.permissions import (
    EffectivePermissions,
    PermissionService,
    PolicyRecord,
    PolicyUpdate,
    get_permission_service,
)
from timeline_backend.services.permissions import presets
from timeline_backend.services.permissions.store import validate_node_id

logger = get_logger(__name__)
router = APIRouter()


@router.post("/nodes/permissions/bulk", response_model=BulkNodePoliciesResponse)
async def get_bulk_node_permissions(
    request: BulkNodePoliciesRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Get policies for several nodes

    Nodes the caller does not own come back with an empty policy list.
    """
    policies = await service.admin.get_bulk_node_policies(db, request.node_ids, current_user_id)
    return BulkNodePoliciesResponse(
        nodes=[
            NodePoliciesResponse(
                node_id=node_id,
                policies=[PolicyRecord.model_validate(p) for p in node_policies],
            )
            for node_id, node_policies in policies.items()
        ]
    )


@router.put("/nodes/permissions/bulk", response_model=SuccessResponse)
async def set_bulk_subject_permissions(
    request: BulkSubjectPermissionsRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Set policies for specific subjects across several nodes

    Only the touched (node, subject) pairs are replaced.
    """
    await service.admin.set_bulk_subject_permissions(db, current_user_id, request.policies)
    return SuccessResponse(
        message="Permissions updated",
        data={"policies": len(request.policies)},
    )


@router.get("/nodes/{node_id}/access", response_model=NodeAccessResponse)
async def get_node_access(
    node_id: str,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: Optional[int] = Depends(get_current_user_id_optional),
    service: PermissionService = Depends(get_permission_service),
):
    """Access level of the caller (anonymous allowed) on a node"""
    access_level = await service.evaluator.get_access_level(db, current_user_id, node_id)
    can_edit = await service.evaluator.can_edit(db, current_user_id, node_id)
    return NodeAccessResponse(
        node_id=validate_node_id(node_id),
        access_level=access_level,
        can_view=access_level is not None,
        can_edit=can_edit,
    )


@router.post("/nodes/{node_id}/permissions", response_model=SuccessResponse)
@track_request("POST", "/nodes/{node_id}/permissions")
async def set_node_permissions(
    node_id: str,
    request: SetPermissionsRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Replace every policy of a node

    Only the node owner can set permissions. An empty list makes the node
    private again.
    """
    await service.admin.set_node_permissions(db, node_id, current_user_id, request.policies)
    return SuccessResponse(
        message="Permissions updated",
        data={"node_id": node_id, "policies": len(request.policies)},
    )


@router.post("/nodes/{node_id}/permissions/presets/{preset}", response_model=SuccessResponse)
async def apply_permission_preset(
    node_id: str,
    preset: str,
    organization_id: Optional[int] = Query(None, gt=0),
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Replace a node's policies with a named preset

    Presets: public_overview, public_full, org_viewable (needs
    ``organization_id``), private.
    """
    if preset == "org_viewable":
        if organization_id is None:
            raise ValidationException(
                message="organization_id is required for the org_viewable preset"
            )
        policies = presets.org_viewable(organization_id)
    elif preset in presets.PRESETS:
        policies = presets.PRESETS[preset]()
    else:
        raise ValidationException(
            message="Unknown permission preset",
            details={"preset": preset, "valid_presets": sorted([*presets.PRESETS, "org_viewable"])},
        )

    await service.admin.set_node_permissions(db, node_id, current_user_id, policies)
    return SuccessResponse(
        message="Permissions updated",
        data={"node_id": node_id, "preset": preset},
    )


@router.get("/nodes/{node_id}/permissions", response_model=NodePoliciesResponse)
async def get_node_permissions(
    node_id: str,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """List policies of a node (owner only)"""
    policies = await service.admin.get_node_policies(db, node_id, current_user_id)
    return NodePoliciesResponse(
        node_id=validate_node_id(node_id),
        policies=[PolicyRecord.model_validate(p) for p in policies],
    )


@router.get("/nodes/{node_id}/permissions/effective", response_model=EffectivePermissions)
async def get_effective_permissions(
    node_id: str,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """Who can see a node (owner only)"""
    await service.admin.get_node_policies(db, node_id, current_user_id)
    return await service.store.get_effective_permissions(db, node_id)


@router.delete("/nodes/{node_id}/permissions/{policy_id}", response_model=SuccessResponse)
async def delete_node_permission(
    node_id: str,
    policy_id: str,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """Revoke one policy of a node"""
    await service.admin.delete_node_permission(db, node_id, policy_id, current_user_id)
    return SuccessResponse(message="Permission revoked", data={"policy_id": policy_id})


@router.put("/permissions/bulk", response_model=BulkPolicyUpdateResponse)
async def bulk_update_permissions(
    request: BulkPolicyUpdateRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """Apply several partial policy updates in one transaction"""
    updated = await service.admin.bulk_update_policies(
        db,
        [(item.policy_id, item.updates) for item in request.updates],
        current_user_id,
    )
    return BulkPolicyUpdateResponse(updated=[PolicyRecord.model_validate(p) for p in updated])


@router.put("/permissions/{policy_id}", response_model=PolicyRecord)
async def update_permission(
    policy_id: str,
    updates: PolicyUpdate,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """Partially update one policy"""
    policy = await service.admin.update_node_permission(db, policy_id, updates, current_user_id)
    return PolicyRecord.model_validate(policy)


@router.delete("/permissions/{policy_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_permission(
    policy_id: str,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: int = Depends(get_current_user_id),
    service: PermissionService = Depends(get_permission_service),
):
    """Revoke one policy by id"""
    await service.store.delete_policy(db, policy_id, current_user_id)
