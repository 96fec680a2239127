from fastapi import APIRouter
from app.api.v1 import school_systems, webhooks
from app.config import settings
from app.dependencies import get_sync_worker

router = APIRouter()

router.include_router(school_systems.router, prefix="/api/v1")
router.include_router(webhooks.router, prefix="/api/v1")


@router.get("/")
async def root():
    return {
        "message": settings.APP_NAME,
        "version": "0.1.0",
        "docs": "/docs",
        "webhooks": "/api/v1/school-systems/webhooks/{system_id}"
    }


@router.get("/health")
async def health():
    return {"status": "healthy"}


@router.get("/worker/status")
async def worker_status():
    worker = get_sync_worker()
    worker_info = worker.get_status()
    worker_info["enabled"] = settings.SYNC_WORKER_ENABLED
    worker_info["status"] = "healthy" if worker_info["healthy"] else "unhealthy"
    return worker_info
