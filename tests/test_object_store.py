"""Tests for model_importer.models.object_store."""

from __future__ import annotations

import io

import pytest
from botocore.exceptions import ClientError

from model_importer.config import ImporterSettings
from model_importer.core.errors import (
    DestinationExistsError,
    MissingInputError,
    ObjectNotFoundError,
)
from model_importer.models.object_store import (
    LocalObjectStore,
    S3ObjectStore,
    create_object_store,
)

from .conftest import DEST


# ---------------------------------------------------------------------------
# LocalObjectStore
# ---------------------------------------------------------------------------


class TestLocalObjectStore:
    async def test_write_then_read(self, objects):
        await objects.write_bytes(DEST, "org/model/config.json", b'{"a": 1}')

        assert await objects.exists(DEST, "org/model/config.json")
        assert await objects.size(DEST, "org/model/config.json") == 8
        assert await objects.read_bytes(DEST, "org/model/config.json") == b'{"a": 1}'

    async def test_missing_object(self, objects):
        assert await objects.exists(DEST, "nope") is False
        assert await objects.size(DEST, "nope") is None
        with pytest.raises(ObjectNotFoundError):
            await objects.read_bytes(DEST, "nope")

    async def test_writer_commits_on_close(self, objects, tmp_path):
        async with objects.open_writer(DEST, "m/weights.bin") as writer:
            await writer.write(b"abc")
            await writer.write(b"def")
            assert not await objects.exists(DEST, "m/weights.bin")

        assert await objects.read_bytes(DEST, "m/weights.bin") == b"abcdef"
        leftovers = list((tmp_path / "storage" / DEST / "m").glob("*.part"))
        assert leftovers == []

    async def test_writer_discards_on_error(self, objects, tmp_path):
        with pytest.raises(RuntimeError):
            async with objects.open_writer(DEST, "m/weights.bin") as writer:
                await writer.write(b"partial")
                raise RuntimeError("source went away")

        assert not await objects.exists(DEST, "m/weights.bin")
        assert list((tmp_path / "storage" / DEST / "m").glob("*.part")) == []

    async def test_key_cannot_escape_destination(self, objects):
        with pytest.raises(MissingInputError):
            await objects.write_bytes(DEST, "../other/file", b"x")

    async def test_invalid_destination_name(self, objects):
        with pytest.raises(MissingInputError):
            await objects.exists("..", "file")

    async def test_create_and_list_destinations(self, objects):
        await objects.create_destination("alpha")
        await objects.create_destination("beta")

        assert await objects.list_destinations() == ["alpha", "beta"]
        assert await objects.destination_exists("alpha")
        assert not await objects.destination_exists("gamma")

    async def test_create_existing_destination(self, objects):
        await objects.create_destination("alpha")
        with pytest.raises(DestinationExistsError):
            await objects.create_destination("alpha")


# ---------------------------------------------------------------------------
# S3ObjectStore
# ---------------------------------------------------------------------------


def _missing(operation):
    return ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, operation)


class FakeS3Client:
    def __init__(self):
        self.buckets = {}
        self.calls = []
        self.uploads = {}

    def _bucket(self, name):
        if name not in self.buckets:
            raise ClientError({"Error": {"Code": "NoSuchBucket"}}, "Bucket")
        return self.buckets[name]

    def head_bucket(self, Bucket):
        if Bucket not in self.buckets:
            raise _missing("HeadBucket")
        return {}

    def create_bucket(self, **kwargs):
        self.calls.append(("create_bucket", kwargs))
        self.buckets[kwargs["Bucket"]] = {}

    def list_buckets(self):
        return {"Buckets": [{"Name": name} for name in self.buckets]}

    def head_object(self, Bucket, Key):
        objects = self._bucket(Bucket)
        if Key not in objects:
            raise _missing("HeadObject")
        return {"ContentLength": len(objects[Key])}

    def get_object(self, Bucket, Key):
        objects = self._bucket(Bucket)
        if Key not in objects:
            raise ClientError({"Error": {"Code": "NoSuchKey"}}, "GetObject")
        return {"Body": io.BytesIO(objects[Key])}

    def put_object(self, Bucket, Key, Body, **kwargs):
        self.calls.append(("put_object", Key, kwargs.get("ContentType")))
        self._bucket(Bucket)[Key] = Body

    def create_multipart_upload(self, Bucket, Key):
        upload_id = f"upload-{len(self.uploads) + 1}"
        self.uploads[upload_id] = []
        return {"UploadId": upload_id}

    def upload_part(self, Bucket, Key, PartNumber, UploadId, Body):
        self.uploads[UploadId].append(Body)
        return {"ETag": f"etag-{PartNumber}"}

    def complete_multipart_upload(self, Bucket, Key, UploadId, MultipartUpload):
        self.calls.append(("complete", [p["PartNumber"] for p in MultipartUpload["Parts"]]))
        self._bucket(Bucket)[Key] = b"".join(self.uploads.pop(UploadId))

    def abort_multipart_upload(self, Bucket, Key, UploadId):
        self.calls.append(("abort", UploadId))
        self.uploads.pop(UploadId)


class TestS3ObjectStore:
    def setup_method(self):
        self.client = FakeS3Client()
        self.store = S3ObjectStore(region="us-east-1", client=self.client, part_size=0)

    async def test_part_size_has_s3_minimum(self):
        assert self.store.part_size == 5 * 1024 * 1024

    async def test_create_destination(self):
        await self.store.create_destination("bucket-a")
        assert await self.store.destination_exists("bucket-a")
        assert await self.store.list_destinations() == ["bucket-a"]
        with pytest.raises(DestinationExistsError):
            await self.store.create_destination("bucket-a")

    async def test_create_destination_outside_default_region(self):
        store = S3ObjectStore(region="eu-west-1", client=self.client)
        await store.create_destination("bucket-eu")
        _, kwargs = self.client.calls[-1]
        assert kwargs["CreateBucketConfiguration"] == {"LocationConstraint": "eu-west-1"}

    async def test_small_object_uses_single_put(self):
        await self.store.create_destination("b")
        async with self.store.open_writer("b", "m/config.json") as writer:
            await writer.write(b"{}")

        assert await self.store.read_bytes("b", "m/config.json") == b"{}"
        assert await self.store.size("b", "m/config.json") == 2
        assert self.client.uploads == {}

    async def test_large_object_uses_multipart_upload(self):
        await self.store.create_destination("b")
        part = b"x" * (5 * 1024 * 1024)
        async with self.store.open_writer("b", "m/weights.bin") as writer:
            await writer.write(part)
            await writer.write(b"tail")

        assert ("complete", [1, 2]) in self.client.calls
        assert await self.store.size("b", "m/weights.bin") == len(part) + 4

    async def test_multipart_upload_aborted_on_error(self):
        await self.store.create_destination("b")
        with pytest.raises(RuntimeError):
            async with self.store.open_writer("b", "m/weights.bin") as writer:
                await writer.write(b"x" * (5 * 1024 * 1024))
                raise RuntimeError("stream broke")

        assert ("abort", "upload-1") in self.client.calls
        assert not await self.store.exists("b", "m/weights.bin")

    async def test_missing_object(self):
        await self.store.create_destination("b")
        assert await self.store.size("b", "nope") is None
        with pytest.raises(ObjectNotFoundError):
            await self.store.read_bytes("b", "nope")

    async def test_write_bytes_sets_content_type(self):
        await self.store.create_destination("b")
        await self.store.write_bytes("b", "meta.json", b"{}", content_type="application/json")
        assert ("put_object", "meta.json", "application/json") in self.client.calls


def test_create_object_store_local(tmp_path):
    settings = ImporterSettings({"STORAGE_BACKEND": "local", "STORAGE_ROOT": str(tmp_path / "root")})
    store = create_object_store(settings)
    assert isinstance(store, LocalObjectStore)
    assert store.root == tmp_path / "root"
