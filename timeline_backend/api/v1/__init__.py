# API v1 routes
from fastapi import APIRouter

from timeline_backend.api.v1 import permissions, timeline

router = APIRouter()

router.include_router(timeline.router, prefix="/timeline", tags=["timeline"])
router.include_router(permissions.router, tags=["permissions"])
