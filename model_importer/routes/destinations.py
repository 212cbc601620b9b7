"""
Destination management API routes
"""

from typing import List
from fastapi import APIRouter, Depends

from ..core.dependencies import get_import_service
from ..services.import_service import ImportService
from ..schemas.models import CreateDestinationRequest, DestinationInfo

router = APIRouter(prefix="/models/destinations", tags=["destinations"])


@router.get("", response_model=List[DestinationInfo], response_model_exclude_none=True)
async def list_destinations(
    import_service: ImportService = Depends(get_import_service)
):
    """List destinations that hold a metadata document, with their records"""
    return await import_service.list_destinations()


@router.post("", response_model=DestinationInfo, status_code=201)
async def create_destination(
    request: CreateDestinationRequest,
    import_service: ImportService = Depends(get_import_service)
):
    """Create a destination and write its initial metadata document"""
    return await import_service.create_destination(request.name)
