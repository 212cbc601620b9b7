"""
Metadata Document Store - one JSON ledger of model imports per destination
Every mutation is a full read, an in-memory transform and a full overwrite.
There is no locking and no version token: concurrent writers race and the last
overwrite wins.
"""

import json
from typing import Optional, Callable

import structlog
from pydantic import ValidationError

from ..core.errors import ObjectNotFoundError
from ..schemas.models import (
    MetadataDocument, ModelRecord, ImportStatus, ExternalJob, utcnow
)
from .object_store import ObjectStore

logger = structlog.get_logger(__name__)

METADATA_FILE_NAME = "model-manager-metadata.json"
DEFAULT_DESCRIPTION = "This destination is managed by the Model Importer."


class MetadataDocumentStore:
    """Read/overwrite access to the per-destination metadata document"""

    def __init__(self,
                 objects: ObjectStore,
                 file_name: str = METADATA_FILE_NAME,
                 description: str = DEFAULT_DESCRIPTION):
        self.objects = objects
        self.file_name = file_name
        self.description = description

    def empty_document(self) -> MetadataDocument:
        return MetadataDocument(description=self.description, models=[])

    async def load(self, destination: str) -> Optional[MetadataDocument]:
        """Return the stored document, or None if it is missing or unparseable"""
        try:
            raw = await self.objects.read_bytes(destination, self.file_name)
        except ObjectNotFoundError:
            return None

        try:
            return MetadataDocument.model_validate(json.loads(raw))
        except (ValueError, ValidationError) as e:
            logger.warning("Metadata document unparseable, treating as absent",
                           destination=destination, error=str(e))
            return None

    async def read(self, destination: str) -> MetadataDocument:
        """Return the stored document, or an empty default one"""
        document = await self.load(destination)
        if document is None:
            logger.info("No metadata document, using empty default", destination=destination)
            return self.empty_document()
        return document

    async def write(self, destination: str, document: MetadataDocument) -> None:
        """Overwrite the whole document"""
        await self.objects.write_bytes(
            destination,
            self.file_name,
            document.to_json().encode("utf-8"),
            content_type="application/json",
        )
        logger.debug("Metadata document written", destination=destination,
                     models=len(document.models))

    async def _read_modify_write(self, destination: str,
                                 transform: Callable[[MetadataDocument], bool]) -> bool:
        document = await self.read(destination)
        changed = transform(document)
        if changed:
            await self.write(destination, document)
        return changed

    # Record operations
    async def begin_import(self, destination: str, record: ModelRecord) -> None:
        """Drop any record with the same id and append ``record``"""
        def _transform(document: MetadataDocument) -> bool:
            document.models = [m for m in document.models if m.id != record.id]
            document.models.append(record)
            return True

        await self._read_modify_write(destination, _transform)
        logger.info("Import record created", destination=destination,
                    model_id=record.id, status=record.status.value)

    async def attach_job(self, destination: str, model_id: str, job: ExternalJob) -> bool:
        """Record the external job that performs a delegated import"""
        def _transform(document: MetadataDocument) -> bool:
            record = document.find(model_id)
            if record is None:
                return False
            record.external_job_id = job.id
            record.external_job_log_url = job.log_url
            return True

        attached = await self._read_modify_write(destination, _transform)
        if not attached:
            logger.warning("Import record vanished before job could be attached",
                           destination=destination, model_id=model_id, job_id=job.id)
        return attached

    async def finish_import(self, destination: str, model_id: str,
                            record: ModelRecord) -> bool:
        """Replace the non-terminal records for ``model_id`` with the terminal ``record``

        Does nothing if a completed record for the id is already present.
        """
        def _transform(document: MetadataDocument) -> bool:
            if any(m.id == model_id and m.status == ImportStatus.COMPLETED for m in document.models):
                return False
            document.models = [
                m for m in document.models
                if not (m.id == model_id and not m.status.is_terminal)
            ]
            document.models.append(record)
            return True

        return await self._read_modify_write(destination, _transform)

    async def mark_terminal(self, destination: str, model_id: str,
                            status: ImportStatus) -> bool:
        """Move a downloading record to a terminal status; terminal records are left alone"""
        def _transform(document: MetadataDocument) -> bool:
            record = document.find(model_id)
            if record is None or record.status != ImportStatus.DOWNLOADING:
                return False
            record.status = status
            record.finished_at = utcnow()
            return True

        changed = await self._read_modify_write(destination, _transform)
        if changed:
            logger.info("Import record reconciled", destination=destination,
                        model_id=model_id, status=status.value)
        return changed
