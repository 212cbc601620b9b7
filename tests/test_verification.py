"""Tests for model_importer.models.verification."""

from __future__ import annotations

from model_importer.models.verification import VerificationCheck
from model_importer.schemas.models import ImportStatus

from .conftest import DEST, downloading


async def _seed(metadata, *records):
    doc = metadata.empty_document()
    doc.models.extend(records)
    await metadata.write(DEST, doc)


class TestVerificationCheck:
    async def test_completed_record_is_verified(self, metadata):
        await _seed(metadata, downloading("m1").model_copy(update={"status": ImportStatus.COMPLETED}))
        result = await VerificationCheck(metadata).verify(DEST, "m1")
        assert result.verified is True
        assert result.error is None

    async def test_downloading_record_is_not_verified(self, metadata):
        await _seed(metadata, downloading("m1", "job-1"))
        result = await VerificationCheck(metadata).verify(DEST, "m1")
        assert result.verified is False
        assert "downloading" in result.error

    async def test_failed_record_is_not_verified(self, metadata):
        await _seed(metadata, downloading("m1").model_copy(update={"status": ImportStatus.FAILED}))
        result = await VerificationCheck(metadata).verify(DEST, "m1")
        assert result.verified is False

    async def test_absent_record(self, metadata):
        await _seed(metadata, downloading("other"))
        result = await VerificationCheck(metadata).verify(DEST, "m1")
        assert result.verified is False
        assert "not recorded" in result.error

    async def test_absent_document(self, metadata):
        result = await VerificationCheck(metadata).verify(DEST, "m1")
        assert result.verified is False
        assert "No metadata document" in result.error

    async def test_unparseable_document(self, metadata, objects):
        await objects.write_bytes(DEST, metadata.file_name, b"[]garbage")
        result = await VerificationCheck(metadata).verify(DEST, "m1")
        assert result.verified is False
