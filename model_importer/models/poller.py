"""
Status reconciliation for delegated imports
The poller asks the execution engine for a job's state and, once the job is
terminal, moves the matching downloading record to completed or failed. The
watcher runs bulk polls periodically until it is told to stop.
"""

import asyncio
from typing import Iterable, List, Optional

import structlog

from ..core.errors import JobNotFoundError
from ..schemas.models import (
    ImportStatus, JobStatusResponse, MetadataDocument, PollItem, StatusUpdate
)
from .execution_engine import ExecutionEngine, map_job_status
from .metadata_store import MetadataDocumentStore
from .object_store import ObjectStore

logger = structlog.get_logger(__name__)

LOGS_PENDING = "Logs are being generated..."


def pending_jobs(document: MetadataDocument, destination: str) -> List[PollItem]:
    """Poll items for every downloading record that has an external job"""
    return [
        PollItem(job_id=record.external_job_id, destination=destination, model_id=record.id)
        for record in document.models
        if record.status == ImportStatus.DOWNLOADING and record.external_job_id
    ]


class StatusPoller:
    """Reconcile engine job states into the metadata documents"""

    def __init__(self, engine: ExecutionEngine, metadata: MetadataDocumentStore):
        self.engine = engine
        self.metadata = metadata

    async def reconcile(self, destination: str, model_id: str, status: ImportStatus) -> bool:
        """Apply a terminal status; failures are logged and leave the document untouched"""
        try:
            return await self.metadata.mark_terminal(destination, model_id, status)
        except Exception as e:
            logger.error("Failed to update metadata for model", model_id=model_id,
                         destination=destination, error=str(e))
            return False

    async def poll(self, job_id: str, destination: str, model_id: str) -> JobStatusResponse:
        """Single-job status check"""
        job = await self.engine.get_job(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found.")

        mapped = map_job_status(job.status)
        if mapped is not None:
            await self.reconcile(destination, model_id, mapped)

        logs = await self._logs(job)
        status = mapped.value if mapped is not None else job.status
        return JobStatusResponse(status=status, logs=logs)

    async def _logs(self, job) -> str:
        """Job logs, or the pending placeholder when they cannot be read"""
        try:
            return await self.engine.fetch_logs(job)
        except Exception as e:
            logger.warning("Could not fetch job logs", job_id=job.id, error=str(e))
            return LOGS_PENDING

    async def _poll_one(self, item: PollItem) -> Optional[StatusUpdate]:
        try:
            job = await self.engine.get_job(item.job_id)
        except Exception as e:
            logger.error("Bulk update: error fetching job status", job_id=item.job_id, error=str(e))
            return None

        if job is None or not job.status:
            logger.warning("Bulk update: no status for job", job_id=item.job_id)
            return None
        mapped = map_job_status(job.status)
        if mapped is None:
            return None

        if await self.reconcile(item.destination, item.model_id, mapped):
            logger.info("Bulk update: metadata updated", model_id=item.model_id,
                        destination=item.destination, status=mapped.value)
            return StatusUpdate(model_id=item.model_id, destination=item.destination, status=mapped)
        return None

    async def poll_many(self, items: Iterable[PollItem]) -> List[StatusUpdate]:
        """Poll every item concurrently; only items whose record changed are reported"""
        results = await asyncio.gather(*(self._poll_one(item) for item in items))
        return [update for update in results if update is not None]

    async def poll_destination(self, destination: str) -> List[StatusUpdate]:
        document = await self.metadata.read(destination)
        return await self.poll_many(pending_jobs(document, destination))


class ImportWatcher:
    """Periodic bulk poll across every managed destination, stopped by a signal"""

    def __init__(self, poller: StatusPoller, objects: ObjectStore, interval: float):
        self.poller = poller
        self.objects = objects
        self.interval = interval
        self._stop = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> List[StatusUpdate]:
        updates: List[StatusUpdate] = []
        for destination in await self.objects.list_destinations():
            document = await self.poller.metadata.load(destination)
            if document is None:
                continue
            updates.extend(await self.poller.poll_many(pending_jobs(document, destination)))
        return updates

    async def _run(self):
        logger.info("Import watcher started", interval=self.interval)
        while not self._stop.is_set():
            try:
                updates = await self.run_once()
                if updates:
                    logger.info("Import watcher reconciled records", count=len(updates))
            except Exception as e:
                logger.error("Import watcher pass failed", error=str(e))
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Import watcher stopped")

    def start(self) -> None:
        if self.interval <= 0 or self.running:
            return
        self._stop.clear()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        self._stop.set()
        if self._task is not None:
            await self._task
            self._task = None
