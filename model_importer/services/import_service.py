"""
Import Service
High-level service orchestrating preflight, transfers, status polling and verification
"""

import asyncio
import logging
from typing import Dict, List, Optional, Set, Union

from ..core.errors import MissingInputError
from ..models.execution_engine import ExecutionEngine
from ..models.metadata_store import MetadataDocumentStore
from ..models.object_store import ObjectStore
from ..models.poller import StatusPoller
from ..models.progress import QueueProgressSink
from ..models.resolvers import RegistryResolver
from ..models.transfer import TransferStrategy
from ..models.verification import VerificationCheck
from ..schemas.models import (
    BulkStatusRequest, BulkStatusResponse, DelegatedImportResponse, DestinationInfo,
    JobStatusResponse, ModelSource, PreflightManifest, PreflightRequest,
    StartImportRequest, VerificationResult,
)

logger = logging.getLogger(__name__)


class ImportService:
    """Async facade the HTTP routes call into"""

    def __init__(self,
                 resolvers: Dict[ModelSource, RegistryResolver],
                 strategies: Dict[ModelSource, TransferStrategy],
                 metadata: MetadataDocumentStore,
                 objects: ObjectStore,
                 poller: StatusPoller,
                 verification: VerificationCheck,
                 engine: Optional[ExecutionEngine] = None):
        self.resolvers = resolvers
        self.strategies = strategies
        self.metadata = metadata
        self.objects = objects
        self.poller = poller
        self.verification = verification
        self.engine = engine
        self._tasks: Set[asyncio.Task] = set()
        logger.info("ImportService initialized")

    def _resolver(self, source: ModelSource) -> RegistryResolver:
        resolver = self.resolvers.get(source)
        if resolver is None:
            raise MissingInputError(f"Unsupported source: {source}")
        return resolver

    def _strategy(self, source: ModelSource) -> TransferStrategy:
        strategy = self.strategies.get(source)
        if strategy is None:
            raise MissingInputError(f"Unsupported source: {source}")
        return strategy

    @property
    def active_transfers(self) -> int:
        return len(self._tasks)

    # Preflight
    async def preflight(self, request: PreflightRequest) -> PreflightManifest:
        """Resolve a model into its file manifest"""
        return await self._resolver(request.source).preflight(request.model_id, request.credentials)

    async def _manifest_for(self, request: StartImportRequest) -> PreflightManifest:
        needs_manifest = request.source == ModelSource.OLLAMA and request.manifest is None
        if request.files is None or needs_manifest:
            logger.info(f"No manifest supplied for {request.model_id}, running preflight")
            return await self._resolver(request.source).preflight(request.model_id, request.credentials)
        return PreflightManifest.from_files(request.files, manifest=request.manifest)

    # Transfers
    def _track(self, task: asyncio.Task, label: str):
        self._tasks.add(task)

        def _done(finished: asyncio.Task):
            self._tasks.discard(finished)
            if finished.cancelled():
                logger.warning(f"Transfer {label} was cancelled")
            elif finished.exception() is not None:
                logger.error(f"Transfer {label} failed: {finished.exception()}")

        task.add_done_callback(_done)

    async def start_import(self, request: StartImportRequest) -> Union[QueueProgressSink, DelegatedImportResponse]:
        """Start an import

        Direct transfers run in the background and report through the returned
        sink; delegated transfers return the submitted job handle.
        """
        strategy = self._strategy(request.source)
        manifest = await self._manifest_for(request)
        label = f"{request.model_id} -> {request.destination}"

        if strategy.streams_progress:
            sink = QueueProgressSink(label=label)
            task = asyncio.create_task(strategy.start(request, manifest, sink))
            self._track(task, label)
            logger.info(f"Direct transfer started: {label}")
            return sink

        outcome = await strategy.start(request, manifest)
        logger.info(f"Delegated transfer submitted: {label} as job {outcome.job_id}")
        return DelegatedImportResponse(job_id=outcome.job_id, log_url=outcome.log_url, status=outcome.status)

    # Status
    async def get_status(self, job_id: str, destination: Optional[str], model_id: Optional[str]) -> JobStatusResponse:
        if not job_id or not destination or not model_id:
            raise MissingInputError("Missing jobId, destination, or modelId")
        return await self.poller.poll(job_id, destination, model_id)

    async def bulk_status(self, request: BulkStatusRequest) -> BulkStatusResponse:
        if not request.items:
            raise MissingInputError("Invalid request body. 'items' array is required.")
        updated = await self.poller.poll_many(request.items)
        logger.info(f"Bulk status: {len(updated)} of {len(request.items)} records updated")
        return BulkStatusResponse(updated=updated)

    async def verify(self, destination: Optional[str], model_id: Optional[str]) -> VerificationResult:
        if not destination or not model_id:
            raise MissingInputError("Missing destination or modelId")
        return await self.verification.verify(destination, model_id)

    # Destinations
    async def list_destinations(self) -> List[DestinationInfo]:
        """Every destination holding a readable metadata document"""
        destinations = []
        for name in await self.objects.list_destinations():
            document = await self.metadata.load(name)
            if document is None:
                continue
            destinations.append(DestinationInfo(name=name, models=document.models))
        return destinations

    async def create_destination(self, name: str) -> DestinationInfo:
        """Create a destination and write its initial metadata document"""
        await self.objects.create_destination(name)
        document = self.metadata.empty_document()
        await self.metadata.write(name, document)
        logger.info(f"Destination created: {name}")
        return DestinationInfo(name=name, models=document.models)

    async def close(self):
        """Wait for running transfers, then release registry and engine sessions"""
        if self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} transfer(s) to finish")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        for resolver in self.resolvers.values():
            await resolver.close()
        if self.engine is not None:
            await self.engine.close()
        logger.info("ImportService closed")
