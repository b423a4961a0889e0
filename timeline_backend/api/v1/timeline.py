"""
Timeline API Routes
Permission-filtered timeline listings and batch authorization
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from timeline_backend.api.dependencies import get_current_user_id_optional
from timeline_backend.core.logging import get_logger
from timeline_backend.core.permissions import PermissionAction, VisibilityLevel
from timeline_backend.db.session import get_db_session
from timeline_backend.monitoring import track_request
from timeline_backend.models.sharing import AccessibleNodesResponse, BatchAuthorizationRequest
from timeline_backend.services.permissions import BatchAuthorizationResult
from timeline_backend.services.timeline import (
    TimelineNodeView,
    TimelineNodeWithPermissions,
    TimelineService,
    get_timeline_service,
)

logger = get_logger(__name__)
router = APIRouter()


@router.get("/nodes", response_model=List[TimelineNodeView])
@track_request("GET", "/timeline/nodes")
async def list_nodes(
    username: Optional[str] = Query(None, description="Timeline owner; defaults to the caller"),
    action: PermissionAction = Query(PermissionAction.VIEW),
    level: VisibilityLevel = Query(VisibilityLevel.OVERVIEW),
    db: AsyncSession = Depends(get_db_session),
    current_user_id: Optional[int] = Depends(get_current_user_id_optional),
    service: TimelineService = Depends(get_timeline_service),
):
    """
    List timeline nodes visible to the caller

    Unknown usernames and profiles with nothing shared both return an empty list.
    """
    return await service.get_all_nodes(db, current_user_id, username, action, level)


@router.get("/nodes/permissions", response_model=List[TimelineNodeWithPermissions])
async def list_nodes_with_permissions(
    username: Optional[str] = Query(None, description="Timeline owner; defaults to the caller"),
    action: PermissionAction = Query(PermissionAction.VIEW),
    level: VisibilityLevel = Query(VisibilityLevel.OVERVIEW),
    db: AsyncSession = Depends(get_db_session),
    current_user_id: Optional[int] = Depends(get_current_user_id_optional),
    service: TimelineService = Depends(get_timeline_service),
):
    """List visible timeline nodes with the caller's permission flags"""
    return await service.get_all_nodes_with_permissions(
        db, current_user_id, username, action, level
    )


@router.get("/nodes/accessible", response_model=AccessibleNodesResponse)
async def list_accessible_nodes(
    action: PermissionAction = Query(PermissionAction.VIEW),
    min_level: VisibilityLevel = Query(VisibilityLevel.OVERVIEW),
    db: AsyncSession = Depends(get_db_session),
    current_user_id: Optional[int] = Depends(get_current_user_id_optional),
    service: TimelineService = Depends(get_timeline_service),
):
    """Every node across the system the caller can access"""
    nodes = await service.permissions.batch.get_accessible_nodes(
        db, current_user_id, action, min_level
    )
    return AccessibleNodesResponse(nodes=nodes, total=len(nodes))


@router.post("/nodes/authorize", response_model=BatchAuthorizationResult)
@track_request("POST", "/timeline/nodes/authorize")
async def authorize_nodes(
    request: BatchAuthorizationRequest,
    db: AsyncSession = Depends(get_db_session),
    current_user_id: Optional[int] = Depends(get_current_user_id_optional),
    service: TimelineService = Depends(get_timeline_service),
):
    """Partition node ids into authorized, unauthorized and not found"""
    return await service.check_batch_authorization(
        db,
        current_user_id,
        request.node_ids,
        target_username=request.target_username,
        action=request.action,
        level=request.level,
    )
