"""
Pydantic schemas for the model import system
"""

from .models import *

__all__ = [
    "ModelSource", "ImportStatus",
    "ModelRecord", "MetadataDocument",
    "ManifestFile", "PreflightManifest", "ExternalJob", "ImportJobSpec", "TransferOutcome", "JobState",
    "PreflightRequest", "StartImportRequest", "DelegatedImportResponse",
    "JobStatusResponse", "PollItem", "BulkStatusRequest", "StatusUpdate",
    "BulkStatusResponse", "VerificationResult",
    "CreateDestinationRequest", "DestinationInfo",
    "utcnow",
]
