"""
Service layer for the model importer
Provides the async facade the HTTP routes call into
"""

from .import_service import ImportService

__all__ = ["ImportService"]
