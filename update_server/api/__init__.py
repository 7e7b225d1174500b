"""API module exports"""
from fastapi import APIRouter

from .uploads import get_upload_service, router as upload_router
from .versions import router as version_router

router = APIRouter(prefix="/api")
router.include_router(upload_router)
router.include_router(version_router)

__all__ = ["router", "get_upload_service"]
