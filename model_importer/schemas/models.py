"""
Pydantic schemas for the model import system
Defines the persisted metadata document, preflight manifests and API requests/responses
"""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ModelSource(str, Enum):
    """Registry kinds a model can be imported from"""
    HUGGINGFACE = "huggingface"  # direct registry: file listing + byte streams
    OLLAMA = "ollama"            # delegated registry: manifest resolved by a build job


class ImportStatus(str, Enum):
    """Import record status states"""
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ImportStatus.DOWNLOADING


# Persisted metadata document
class ModelRecord(BaseModel):
    """One tracked import attempt inside a destination's metadata document"""
    id: str = Field(..., description="Registry-qualified model identifier")
    source: ModelSource = Field(..., description="Registry the model was imported from")
    status: ImportStatus = Field(ImportStatus.DOWNLOADING, description="Import status")
    size: Optional[int] = Field(None, ge=0, description="Total size in bytes, from preflight")
    submitted_at: datetime = Field(default_factory=utcnow, alias="submittedAt")
    finished_at: Optional[datetime] = Field(None, alias="finishedAt")
    external_job_id: Optional[str] = Field(None, alias="externalJobId")
    external_job_log_url: Optional[str] = Field(None, alias="externalJobLogUrl")

    # Keep unknown keys written by other tools
    model_config = ConfigDict(populate_by_name=True, extra="allow")


class MetadataDocument(BaseModel):
    """Per-destination ledger of model imports"""
    description: str = Field("", description="Free text shown to operators")
    models: List[ModelRecord] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")

    def find(self, model_id: str) -> Optional[ModelRecord]:
        """Return the first record with the given id"""
        for record in self.models:
            if record.id == model_id:
                return record
        return None

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, indent=2)


# Preflight
class ManifestFile(BaseModel):
    name: str = Field(..., description="File path (direct) or content digest (delegated)")
    size: int = Field(0, ge=0, description="Size in bytes")


class PreflightManifest(BaseModel):
    """Resolved file list for a model; never persisted"""
    files: List[ManifestFile] = Field(default_factory=list)
    total_size: int = Field(0, ge=0, alias="totalSize")
    manifest: Optional[Dict[str, Any]] = Field(None, description="Registry specific manifest payload")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_files(cls, files: List[ManifestFile], manifest: Optional[Dict[str, Any]] = None):
        return cls(files=files, total_size=sum(f.size for f in files), manifest=manifest)


# Execution engine
class ExternalJob(BaseModel):
    """Handle returned by the execution engine for a submitted job"""
    id: str
    log_url: Optional[str] = Field(None, alias="logUrl")

    model_config = ConfigDict(populate_by_name=True)


class ImportJobSpec(BaseModel):
    """Parameters handed to the execution engine for a delegated import"""
    model_id: str = Field(..., alias="modelId")
    source: ModelSource
    destination: str
    manifest_url: Optional[str] = Field(None, alias="manifestUrl")
    manifest_key: Optional[str] = Field(None, alias="manifestKey")
    blob_prefix: Optional[str] = Field(None, alias="blobPrefix")
    files: List[ManifestFile] = Field(default_factory=list)
    manifest: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


class TransferOutcome(BaseModel):
    """Result of a transfer strategy run"""
    model_id: str
    destination: str
    status: str = Field(..., description="Import status, or the engine status for delegated jobs")
    job_id: Optional[str] = None
    log_url: Optional[str] = None
    bytes_transferred: int = 0
    failed_files: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    model_config = ConfigDict(protected_namespaces=())


class JobState(BaseModel):
    """Engine-side view of a job"""
    id: str
    status: Optional[str] = None
    log_url: Optional[str] = Field(None, alias="logUrl")

    model_config = ConfigDict(populate_by_name=True, extra="allow")


# API Request/Response Schemas
class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, protected_namespaces=())


def _require(value: str, field: str) -> str:
    if value is None or not value.strip():
        raise ValueError(f"{field} is required")
    return value.strip()


class PreflightRequest(_CamelModel):
    model_id: str = Field(..., alias="modelId", description="Model identifier, e.g. org/name or name:tag")
    source: ModelSource = Field(ModelSource.HUGGINGFACE)
    credentials: Optional[str] = Field(None, description="Registry token")

    @field_validator('model_id')
    @classmethod
    def validate_model_id(cls, v):
        return _require(v, "modelId")


class StartImportRequest(_CamelModel):
    model_id: str = Field(..., alias="modelId")
    destination: str = Field(..., description="Destination name (bucket or directory)")
    source: ModelSource = Field(ModelSource.HUGGINGFACE)
    credentials: Optional[str] = None
    total_size: Optional[int] = Field(None, ge=0, alias="totalSize")
    files: Optional[List[ManifestFile]] = Field(None, description="Files from a previous preflight")
    manifest: Optional[Dict[str, Any]] = None

    @field_validator('model_id')
    @classmethod
    def validate_model_id(cls, v):
        return _require(v, "modelId")

    @field_validator('destination')
    @classmethod
    def validate_destination(cls, v):
        return _require(v, "destination")


class DelegatedImportResponse(_CamelModel):
    job_id: str = Field(..., alias="jobId")
    log_url: Optional[str] = Field(None, alias="logUrl")
    status: str = "QUEUED"


class JobStatusResponse(BaseModel):
    status: Optional[str] = None
    logs: str = ""


class PollItem(_CamelModel):
    job_id: str = Field(..., alias="jobId")
    destination: str
    model_id: str = Field(..., alias="modelId")


class BulkStatusRequest(BaseModel):
    items: List[PollItem] = Field(default_factory=list)


class StatusUpdate(_CamelModel):
    model_id: str = Field(..., alias="modelId")
    destination: str
    status: ImportStatus


class BulkStatusResponse(BaseModel):
    updated: List[StatusUpdate] = Field(default_factory=list)


class VerificationResult(BaseModel):
    verified: bool
    error: Optional[str] = None


class CreateDestinationRequest(BaseModel):
    name: str

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        return _require(v, "name")


class DestinationInfo(BaseModel):
    name: str
    models: List[ModelRecord] = Field(default_factory=list)
