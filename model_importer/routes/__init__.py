"""
FastAPI routes for the model importer
Separated by concern for better organization
"""

from .imports import router as imports_router
from .destinations import router as destinations_router
from .health import router as health_router

__all__ = ["health_router", "imports_router", "destinations_router"]
