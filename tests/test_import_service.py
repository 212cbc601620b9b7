"""Tests for model_importer.services.import_service and the app wiring."""

from __future__ import annotations

import pytest

from model_importer.config import ImporterSettings, PartialFailurePolicy
from model_importer.core.errors import EngineUnavailableError, MissingInputError
from model_importer.main import build_import_service
from model_importer.models.object_store import LocalObjectStore
from model_importer.models.progress import QueueProgressSink
from model_importer.models.resolvers import HuggingFaceResolver, OllamaResolver
from model_importer.models.transfer import DelegatedBuildTransfer, DirectStreamingTransfer
from model_importer.schemas.models import (
    BulkStatusRequest,
    ImportStatus,
    ManifestFile,
    ModelSource,
    StartImportRequest,
)

from .conftest import DEST, FakeFileSource


@pytest.fixture
def settings(tmp_path):
    return ImporterSettings({
        "STORAGE_ROOT": str(tmp_path / "storage"),
        "PARTIAL_FAILURE_POLICY": "strict",
        "METADATA_FILE_NAME": "ledger.json",
        "EXECUTION_ENGINE_URL": "",
    })


class TestBuildImportService:
    async def test_wiring(self, settings):
        service = build_import_service(settings)
        try:
            assert isinstance(service.objects, LocalObjectStore)
            assert service.metadata.file_name == "ledger.json"
            assert isinstance(service.resolvers[ModelSource.HUGGINGFACE], HuggingFaceResolver)
            assert isinstance(service.resolvers[ModelSource.OLLAMA], OllamaResolver)

            direct = service.strategies[ModelSource.HUGGINGFACE]
            assert isinstance(direct, DirectStreamingTransfer)
            assert direct.partial_failure_policy == PartialFailurePolicy.STRICT
            assert isinstance(service.strategies[ModelSource.OLLAMA], DelegatedBuildTransfer)
        finally:
            await service.close()

    async def test_delegated_import_without_engine(self, settings):
        service = build_import_service(settings)
        request = StartImportRequest(
            model_id="llama3", destination=DEST, source=ModelSource.OLLAMA,
            files=[ManifestFile(name="sha256:aaa", size=1)], manifest={"layers": []},
        )
        try:
            with pytest.raises(EngineUnavailableError):
                await service.start_import(request)
        finally:
            await service.close()


class TestImportService:
    async def test_direct_import_runs_in_background(self, settings):
        service = build_import_service(settings)
        hub = FakeFileSource({"config.json": b"{}"})
        service.strategies[ModelSource.HUGGINGFACE] = DirectStreamingTransfer(
            service.metadata, service.objects, hub
        )
        request = StartImportRequest(
            model_id="org/model", destination=DEST,
            files=[ManifestFile(name="config.json", size=2)],
        )

        sink = await service.start_import(request)
        assert isinstance(sink, QueueProgressSink)
        assert service.active_transfers == 1

        # Shutdown waits for the running transfer
        await service.close()

        assert service.active_transfers == 0
        assert sink.closed
        assert (await service.metadata.read(DEST)).find("org/model").status == ImportStatus.COMPLETED

    async def test_bulk_status_requires_items(self, settings):
        service = build_import_service(settings)
        try:
            with pytest.raises(MissingInputError):
                await service.bulk_status(BulkStatusRequest(items=[]))
        finally:
            await service.close()

    async def test_create_destination_writes_initial_document(self, settings):
        service = build_import_service(settings)
        try:
            info = await service.create_destination("fresh")
            assert info.models == []
            assert await service.objects.exists("fresh", "ledger.json")
            assert [d.name for d in await service.list_destinations()] == ["fresh"]
        finally:
            await service.close()
