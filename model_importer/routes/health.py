"""
Health API routes
Provides health checks for the importer process
"""

from datetime import datetime, timezone
from fastapi import APIRouter, Depends, Request

from ..core.dependencies import get_import_service
from ..services.import_service import ImportService

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/")
async def health_check(
    request: Request,
    import_service: ImportService = Depends(get_import_service)
):
    """Basic health check endpoint"""
    watcher = getattr(request.app.state, "import_watcher", None)
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active_transfers": import_service.active_transfers,
        "watcher_running": bool(watcher and watcher.running),
    }


@router.get("/liveness")
async def liveness_check():
    """Kubernetes liveness probe endpoint"""
    return {"status": "alive", "service": "model-importer"}
