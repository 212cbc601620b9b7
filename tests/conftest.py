"""Shared fixtures and fakes for the importer tests."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

import pytest

from model_importer.core.errors import SubmissionError, TransferError
from model_importer.models.execution_engine import ExecutionEngine
from model_importer.models.metadata_store import MetadataDocumentStore
from model_importer.models.object_store import LocalObjectStore
from model_importer.models.progress import ProgressSink
from model_importer.models.resolvers import HuggingFaceResolver
from model_importer.schemas.models import (
    ExternalJob,
    ImportJobSpec,
    ImportStatus,
    JobState,
    ModelRecord,
    ModelSource,
)

DEST = "models-bucket"


class RecordingSink(ProgressSink):
    """Keeps every frame in memory."""

    def __init__(self):
        self.frames: List[dict] = []
        self.closed = False

    async def emit(self, frame):
        self.frames.append(frame)

    async def close(self):
        self.closed = True

    @property
    def messages(self) -> List[str]:
        return [f["message"] for f in self.frames if "message" in f]

    @property
    def errors(self) -> List[str]:
        return [f["error"] for f in self.frames if "error" in f]

    def progress_for(self, file_name: str) -> List[dict]:
        return [f for f in self.frames if f.get("file") == file_name]


class FakeFileSource(HuggingFaceResolver):
    """Hugging Face resolver serving file bytes from memory, 4 bytes per chunk."""

    def __init__(self, contents: Dict[str, bytes], failing: Iterable[str] = (),
                 interrupted: Iterable[str] = ()):
        super().__init__(endpoint="https://hf.test")
        self.contents = contents
        self.failing = set(failing)
        self.interrupted = set(interrupted)
        self.requested: List[str] = []

    async def iter_file(self, model_id, file_name, credentials=None):
        self.requested.append(file_name)
        if file_name in self.failing:
            raise TransferError(f"Failed to download {file_name}: 500 Internal Server Error")
        data = self.contents[file_name]
        for i in range(0, len(data), 4):
            yield data[i:i + 4]
            if file_name in self.interrupted:
                raise ConnectionResetError(f"Connection reset while reading {file_name}")


class FakeEngine(ExecutionEngine):
    """In-memory execution engine."""

    def __init__(self, fail_submit: bool = False):
        self.fail_submit = fail_submit
        self.submitted: List[ImportJobSpec] = []
        self.jobs: Dict[str, JobState] = {}
        self.logs: Dict[str, str] = {}
        self.broken: set = set()
        self.get_job_calls: List[str] = []

    def set_status(self, job_id: str, status: Optional[str]):
        self.jobs[job_id] = JobState(id=job_id, status=status)

    async def submit(self, spec):
        if self.fail_submit:
            raise SubmissionError("Execution engine rejected import job: 503 unavailable")
        self.submitted.append(spec)
        job_id = f"job-{len(self.submitted)}"
        self.set_status(job_id, "QUEUED")
        return ExternalJob(id=job_id, log_url=f"https://engine.test/jobs/{job_id}/logs")

    async def get_job(self, job_id):
        self.get_job_calls.append(job_id)
        if job_id in self.broken:
            raise RuntimeError("engine exploded")
        return self.jobs.get(job_id)

    async def fetch_logs(self, job):
        if job.id not in self.logs:
            raise SubmissionError("no logs yet")
        return self.logs[job.id]


def downloading(model_id: str, job_id: Optional[str] = None,
                source: ModelSource = ModelSource.OLLAMA) -> ModelRecord:
    return ModelRecord(id=model_id, source=source, status=ImportStatus.DOWNLOADING,
                       size=10, external_job_id=job_id)


@pytest.fixture
def objects(tmp_path):
    return LocalObjectStore(tmp_path / "storage")


@pytest.fixture
def metadata(objects):
    return MetadataDocumentStore(objects)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def engine():
    return FakeEngine()
