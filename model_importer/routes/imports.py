"""
Model import API routes
Handles preflight, starting imports, job status polling and verification
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse, StreamingResponse

from ..core.dependencies import get_import_service
from ..models.progress import QueueProgressSink
from ..services.import_service import ImportService
from ..schemas.models import (
    PreflightRequest, PreflightManifest, StartImportRequest, JobStatusResponse,
    BulkStatusRequest, BulkStatusResponse, VerificationResult,
)

router = APIRouter(prefix="/models/import", tags=["imports"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/preflight", response_model=PreflightManifest, response_model_exclude_none=True)
async def preflight(
    request: PreflightRequest,
    import_service: ImportService = Depends(get_import_service)
):
    """List a model's files and total size without moving any bytes"""
    return await import_service.preflight(request)


@router.post("/start")
async def start_import(
    request: StartImportRequest,
    import_service: ImportService = Depends(get_import_service)
):
    """Start an import

    Direct imports answer with a ``text/event-stream`` of progress frames;
    delegated imports answer 202 with the submitted job.
    """
    result = await import_service.start_import(request)

    if isinstance(result, QueueProgressSink):
        return StreamingResponse(
            result.event_stream(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    return JSONResponse(status_code=202, content=result.model_dump(by_alias=True))


@router.get("/status/{job_id}", response_model=JobStatusResponse)
async def get_import_status(
    job_id: str,
    destination: Optional[str] = Query(None, description="Destination owning the record"),
    model_id: Optional[str] = Query(None, alias="modelId", description="Model identifier"),
    import_service: ImportService = Depends(get_import_service)
):
    """Poll a delegated job and reconcile its record once terminal"""
    return await import_service.get_status(job_id, destination, model_id)


@router.post("/bulk-status", response_model=BulkStatusResponse)
async def bulk_status(
    request: BulkStatusRequest,
    import_service: ImportService = Depends(get_import_service)
):
    """Poll many delegated jobs; returns only the records that changed"""
    return await import_service.bulk_status(request)


@router.get("/verify", response_model=VerificationResult, response_model_exclude_none=True)
async def verify_import(
    destination: Optional[str] = Query(None),
    model_id: Optional[str] = Query(None, alias="modelId"),
    import_service: ImportService = Depends(get_import_service)
):
    """Check whether a model is recorded as completed in a destination"""
    return await import_service.verify(destination, model_id)
