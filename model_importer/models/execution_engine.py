"""
External execution engine client
Delegated imports run as jobs on an asynchronous engine; jobs are submitted once
and their state is read back by id. Status names follow the Cloud Build vocabulary.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import aiohttp
import structlog
from pydantic import ValidationError

from ..core.errors import EngineUnavailableError, SubmissionError, UpstreamError
from ..schemas.models import ExternalJob, ImportJobSpec, ImportStatus, JobState

logger = structlog.get_logger(__name__)

SUCCESS_STATES = {"SUCCESS"}
FAILURE_STATES = {"FAILURE", "INTERNAL_ERROR", "TIMEOUT", "CANCELLED", "EXPIRED"}
TERMINAL_STATES = SUCCESS_STATES | FAILURE_STATES


def map_job_status(status: Optional[str]) -> Optional[ImportStatus]:
    """Map an engine status to a terminal import status; None while the job is still running"""
    if status in SUCCESS_STATES:
        return ImportStatus.COMPLETED
    if status in FAILURE_STATES:
        return ImportStatus.FAILED
    return None


class ExecutionEngine(ABC):
    """Asynchronous job runner performing delegated imports"""

    @abstractmethod
    async def submit(self, spec: ImportJobSpec) -> ExternalJob:
        """Submit an import job; raises SubmissionError if the engine does not accept it"""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[JobState]:
        """Current state of a job, or None if the engine does not know it"""

    @abstractmethod
    async def fetch_logs(self, job: JobState) -> str:
        ...

    async def close(self) -> None:
        pass


class UnconfiguredExecutionEngine(ExecutionEngine):
    """Stand-in used when no engine URL is configured"""

    def _unavailable(self):
        return EngineUnavailableError(
            "No execution engine is configured; set EXECUTION_ENGINE_URL to enable delegated imports."
        )

    async def submit(self, spec: ImportJobSpec) -> ExternalJob:
        raise self._unavailable()

    async def get_job(self, job_id: str) -> Optional[JobState]:
        raise self._unavailable()

    async def fetch_logs(self, job: JobState) -> str:
        raise self._unavailable()


class HttpExecutionEngine(ExecutionEngine):
    """JSON/HTTP job API

    ``POST {base}/jobs`` submits, ``GET {base}/jobs/{id}`` reads state and
    ``GET {base}/jobs/{id}/logs`` (or the job's ``logUrl``) returns plain-text logs.
    """

    def __init__(self,
                 base_url: str,
                 token: Optional[str] = None,
                 timeout: float = 60.0,
                 session: Optional[aiohttp.ClientSession] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token or None
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None
        logger.info("HttpExecutionEngine initialized", base_url=self.base_url)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=self.timeout))
            self._owns_session = True
        return self._session

    @property
    def _headers(self):
        return {"Authorization": f"Bearer {self.token}"} if self.token else {}

    async def submit(self, spec: ImportJobSpec) -> ExternalJob:
        session = await self._get_session()
        payload = {"type": "model-import", "params": spec.model_dump(mode="json", by_alias=True, exclude_none=True)}
        try:
            async with session.post(f"{self.base_url}/jobs", json=payload, headers=self._headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise SubmissionError(f"Execution engine rejected import job: {response.status} {text}")
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SubmissionError(f"Execution engine unreachable: {e}") from e

        try:
            job = ExternalJob.model_validate(body)
        except ValidationError as e:
            raise SubmissionError(f"Execution engine returned no job id: {body}") from e
        logger.info("Import job submitted", job_id=job.id, model_id=spec.model_id,
                    destination=spec.destination)
        return job

    async def get_job(self, job_id: str) -> Optional[JobState]:
        session = await self._get_session()
        try:
            async with session.get(f"{self.base_url}/jobs/{job_id}", headers=self._headers) as response:
                if response.status == 404:
                    return None
                if response.status >= 400:
                    text = await response.text()
                    raise UpstreamError(f"Execution engine error for job {job_id}: {response.status} {text}")
                body = await response.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise UpstreamError(f"Execution engine unreachable: {e}") from e
        return JobState.model_validate(body)

    async def fetch_logs(self, job: JobState) -> str:
        session = await self._get_session()
        url = job.log_url or f"{self.base_url}/jobs/{job.id}/logs"
        try:
            async with session.get(url, headers=self._headers) as response:
                if response.status >= 400:
                    raise UpstreamError(f"Logs for job {job.id} unavailable: {response.status}")
                return await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"Logs for job {job.id} unavailable: {e}") from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()


def create_execution_engine(settings) -> ExecutionEngine:
    if not settings.execution_engine_url:
        logger.warning("No execution engine configured, delegated imports disabled")
        return UnconfiguredExecutionEngine()
    return HttpExecutionEngine(
        settings.execution_engine_url,
        token=settings.execution_engine_token,
        timeout=settings.request_timeout,
    )
