"""
Transfer strategies - move a model's files into a destination
Direct streaming pumps bytes from the registry into the object store itself;
delegated build hands the work to the external execution engine and returns.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog

from ..config import PartialFailurePolicy
from ..core.errors import ImporterError
from ..schemas.models import (
    ImportJobSpec, ImportStatus, ManifestFile, ModelRecord, ModelSource,
    PreflightManifest, StartImportRequest, TransferOutcome, utcnow,
)
from .execution_engine import ExecutionEngine
from .metadata_store import MetadataDocumentStore
from .object_store import ObjectStore
from .progress import NullProgressSink, ProgressSink
from .resolvers import HuggingFaceResolver, OllamaResolver, OLLAMA_BLOB_PREFIX

logger = structlog.get_logger(__name__)


class TransferStrategy(ABC):
    """Common contract: register the import, then move (or delegate) the bytes"""

    source: ModelSource
    streams_progress = False

    def __init__(self, metadata: MetadataDocumentStore):
        self.metadata = metadata

    def _new_record(self, request: StartImportRequest, manifest: PreflightManifest) -> ModelRecord:
        size = request.total_size if request.total_size is not None else manifest.total_size
        return ModelRecord(
            id=request.model_id,
            source=self.source,
            status=ImportStatus.DOWNLOADING,
            size=size,
            submitted_at=utcnow(),
        )

    @abstractmethod
    async def start(self,
                    request: StartImportRequest,
                    manifest: PreflightManifest,
                    sink: Optional[ProgressSink] = None) -> TransferOutcome:
        ...


class DirectStreamingTransfer(TransferStrategy):
    """Copy every file from the registry to the destination, one file at a time"""

    source = ModelSource.HUGGINGFACE
    streams_progress = True

    def __init__(self,
                 metadata: MetadataDocumentStore,
                 objects: ObjectStore,
                 resolver: HuggingFaceResolver,
                 partial_failure_policy: PartialFailurePolicy = PartialFailurePolicy.BEST_EFFORT):
        super().__init__(metadata)
        self.objects = objects
        self.resolver = resolver
        self.partial_failure_policy = partial_failure_policy

    @staticmethod
    def object_key(model_id: str, file_name: str) -> str:
        return f"{model_id}/{file_name}"

    async def _already_present(self, destination: str, key: str,
                               file: ManifestFile, sink: ProgressSink) -> bool:
        if not await self.objects.exists(destination, key):
            return False
        stored = await self.objects.size(destination, key)
        if file.size and stored is not None and stored != file.size:
            await sink.emit_message(
                f"File {file.name} exists but has a different size. "
                f"Expected: {file.size}, Actual: {stored}. Re-downloading."
            )
            return False
        await sink.emit_message(f"File {file.name} already exists in {destination}. Skipping.")
        await sink.emit_progress(file.name, file.size, file.size)
        return True

    async def _transfer_file(self, request: StartImportRequest, key: str,
                             file: ManifestFile, sink: ProgressSink) -> int:
        transferred = 0
        async with self.objects.open_writer(request.destination, key) as writer:
            async for chunk in self.resolver.iter_file(request.model_id, file.name, request.credentials):
                await writer.write(chunk)
                transferred += len(chunk)
                await sink.emit_progress(file.name, transferred, file.size)
        total = file.size or transferred
        await sink.emit_progress(file.name, total, total)
        await sink.emit_message(f"Successfully uploaded {file.name} to {request.destination}.")
        return transferred

    def _final_status(self, failed_files) -> ImportStatus:
        if failed_files and self.partial_failure_policy == PartialFailurePolicy.STRICT:
            return ImportStatus.FAILED
        return ImportStatus.COMPLETED

    async def start(self,
                    request: StartImportRequest,
                    manifest: PreflightManifest,
                    sink: Optional[ProgressSink] = None) -> TransferOutcome:
        model_id, destination = request.model_id, request.destination
        outcome = TransferOutcome(model_id=model_id, destination=destination,
                                  status=ImportStatus.DOWNLOADING.value)
        log = logger.bind(model_id=model_id, destination=destination)
        sink = sink or NullProgressSink()

        try:
            await sink.emit_message(f"Starting sync of model {model_id} to {destination}.")
            started = self._new_record(request, manifest)
            await self.metadata.begin_import(destination, started)

            if not manifest.files:
                await sink.emit_message(f"No files found for model {model_id}. Nothing to sync.")
            else:
                await sink.emit_message(f"Found {len(manifest.files)} files for model {model_id}. Starting sync...")

            for file in manifest.files:
                key = self.object_key(model_id, file.name)
                if await self._already_present(destination, key, file, sink):
                    continue
                await sink.emit_message(f"Downloading {file.name}...")
                try:
                    outcome.bytes_transferred += await self._transfer_file(request, key, file, sink)
                except Exception as e:
                    # One bad file does not abort the import
                    log.warning("File transfer failed, skipping", file=file.name, error=str(e))
                    outcome.failed_files.append(file.name)
                    await sink.emit_message(f"Failed to transfer {file.name}: {e}")

            status = self._final_status(outcome.failed_files)
            await sink.emit_message("All files processed. Updating metadata...")
            record = started.model_copy(update={"status": status, "finished_at": utcnow()})
            await self.metadata.finish_import(destination, model_id, record)
            outcome.status = status.value

            if outcome.failed_files:
                await sink.emit_message(
                    f"{len(outcome.failed_files)} file(s) could not be transferred: "
                    + ", ".join(outcome.failed_files)
                )
            if status == ImportStatus.COMPLETED:
                await sink.emit_message(f"Sync completed successfully for model {model_id}.")
            else:
                await sink.emit_error(f"Sync failed for model {model_id}.")
            log.info("Direct import finished", status=status.value,
                     bytes_transferred=outcome.bytes_transferred,
                     failed_files=len(outcome.failed_files))

        except Exception as e:
            log.error("Direct import aborted", error=str(e), exc_info=e)
            outcome.error = str(e)
            await sink.emit_error(str(e))
        finally:
            await sink.close()

        return outcome


class DelegatedBuildTransfer(TransferStrategy):
    """Submit the import as a job on the execution engine; progress is polled later"""

    source = ModelSource.OLLAMA

    def __init__(self,
                 metadata: MetadataDocumentStore,
                 engine: ExecutionEngine,
                 resolver: OllamaResolver):
        super().__init__(metadata)
        self.engine = engine
        self.resolver = resolver

    def _job_spec(self, request: StartImportRequest, manifest: PreflightManifest) -> ImportJobSpec:
        return ImportJobSpec(
            model_id=request.model_id,
            source=self.source,
            destination=request.destination,
            manifest_url=self.resolver.manifest_url(request.model_id),
            manifest_key=self.resolver.manifest_key(request.model_id),
            blob_prefix=OLLAMA_BLOB_PREFIX,
            files=manifest.files,
            manifest=manifest.manifest,
        )

    async def start(self,
                    request: StartImportRequest,
                    manifest: PreflightManifest,
                    sink: Optional[ProgressSink] = None) -> TransferOutcome:
        model_id, destination = request.model_id, request.destination
        await self.metadata.begin_import(destination, self._new_record(request, manifest))

        try:
            job = await self.engine.submit(self._job_spec(request, manifest))
        except ImporterError as e:
            # The downloading record stays behind without a job id
            logger.error("Import job submission failed", model_id=model_id,
                         destination=destination, error=e.message)
            raise

        await self.metadata.attach_job(destination, model_id, job)
        if sink is not None:
            await sink.emit_message(f"Import job {job.id} submitted for model {model_id}.")
            await sink.close()

        return TransferOutcome(
            model_id=model_id,
            destination=destination,
            status="QUEUED",
            job_id=job.id,
            log_url=job.log_url,
        )
