"""
Dependency injection for Model Importer services
"""

from fastapi import Request
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..services.import_service import ImportService


def get_import_service(request: Request) -> "ImportService":
    """Dependency to get import service from app state"""
    return request.app.state.import_service
