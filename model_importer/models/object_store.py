"""
Object stores backing import destinations
A destination is a directory under a local root, or an S3 bucket.
Blocking I/O is pushed to worker threads so the event loop keeps serving requests.
"""

import asyncio
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

import structlog

from ..core.errors import DestinationExistsError, ObjectNotFoundError, MissingInputError

logger = structlog.get_logger(__name__)


class ObjectWriter(ABC):
    """Write stream for a single object; committed on close, discarded on abort"""

    @abstractmethod
    async def write(self, chunk: bytes) -> None:
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    @abstractmethod
    async def abort(self) -> None:
        ...

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is None:
            await self.close()
        else:
            await self.abort()
        return False


class ObjectStore(ABC):
    """Key/blob storage addressed by (destination, key)"""

    @abstractmethod
    async def exists(self, destination: str, key: str) -> bool:
        ...

    @abstractmethod
    async def size(self, destination: str, key: str) -> Optional[int]:
        """Stored size in bytes, or None if the object does not exist"""

    @abstractmethod
    async def read_bytes(self, destination: str, key: str) -> bytes:
        """Read a whole object; raises ObjectNotFoundError if it does not exist"""

    @abstractmethod
    async def write_bytes(self, destination: str, key: str, data: bytes,
                          content_type: str = "application/octet-stream") -> None:
        ...

    @abstractmethod
    def open_writer(self, destination: str, key: str) -> ObjectWriter:
        ...

    @abstractmethod
    async def list_destinations(self) -> List[str]:
        ...

    @abstractmethod
    async def destination_exists(self, destination: str) -> bool:
        ...

    @abstractmethod
    async def create_destination(self, destination: str) -> None:
        ...


# Local filesystem
class _LocalObjectWriter(ObjectWriter):

    def __init__(self, path: Path):
        self.path = path
        self.partial_path = path.with_name(f"{path.name}.{uuid.uuid4().hex[:8]}.part")
        self._handle = None

    async def _ensure_open(self):
        if self._handle is None:
            def _open():
                self.partial_path.parent.mkdir(parents=True, exist_ok=True)
                return open(self.partial_path, "wb")
            self._handle = await asyncio.to_thread(_open)

    async def write(self, chunk: bytes) -> None:
        await self._ensure_open()
        await asyncio.to_thread(self._handle.write, chunk)

    async def close(self) -> None:
        await self._ensure_open()

        def _commit():
            self._handle.close()
            os.replace(self.partial_path, self.path)
        await asyncio.to_thread(_commit)

    async def abort(self) -> None:
        if self._handle is None:
            return

        def _discard():
            self._handle.close()
            self.partial_path.unlink(missing_ok=True)
        await asyncio.to_thread(_discard)


class LocalObjectStore(ObjectStore):
    """Filesystem store: each destination is a directory under ``root``"""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info("LocalObjectStore initialized", root=str(self.root))

    def _destination_dir(self, destination: str) -> Path:
        if not destination or "/" in destination or "\\" in destination or destination in (".", ".."):
            raise MissingInputError(f"Invalid destination name: {destination!r}")
        return self.root / destination

    def _path(self, destination: str, key: str) -> Path:
        base = self._destination_dir(destination).resolve()
        path = (base / key).resolve()
        if base != path and base not in path.parents:
            raise MissingInputError(f"Object key escapes destination: {key!r}")
        return path

    async def exists(self, destination: str, key: str) -> bool:
        path = self._path(destination, key)
        return await asyncio.to_thread(path.is_file)

    async def size(self, destination: str, key: str) -> Optional[int]:
        path = self._path(destination, key)

        def _stat():
            try:
                return path.stat().st_size
            except FileNotFoundError:
                return None
        return await asyncio.to_thread(_stat)

    async def read_bytes(self, destination: str, key: str) -> bytes:
        path = self._path(destination, key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError:
            raise ObjectNotFoundError(f"Object {key} not found in {destination}")

    async def write_bytes(self, destination: str, key: str, data: bytes,
                          content_type: str = "application/octet-stream") -> None:
        async with self.open_writer(destination, key) as writer:
            await writer.write(data)

    def open_writer(self, destination: str, key: str) -> ObjectWriter:
        return _LocalObjectWriter(self._path(destination, key))

    async def list_destinations(self) -> List[str]:
        def _list():
            return sorted(p.name for p in self.root.iterdir() if p.is_dir())
        return await asyncio.to_thread(_list)

    async def destination_exists(self, destination: str) -> bool:
        return await asyncio.to_thread(self._destination_dir(destination).is_dir)

    async def create_destination(self, destination: str) -> None:
        path = self._destination_dir(destination)
        try:
            await asyncio.to_thread(path.mkdir, parents=False, exist_ok=False)
        except FileExistsError:
            raise DestinationExistsError(f"Destination {destination} already exists.")
        logger.info("Destination created", destination=destination)


# Amazon S3
class _S3ObjectWriter(ObjectWriter):
    """Multipart upload; parts are flushed once the buffer reaches ``part_size``"""

    def __init__(self, client, bucket: str, key: str, part_size: int):
        self.client = client
        self.bucket = bucket
        self.key = key
        self.part_size = part_size
        self._buffer = bytearray()
        self._upload_id = None
        self._parts = []

    async def _flush(self):
        if self._upload_id is None:
            mpu = await asyncio.to_thread(
                self.client.create_multipart_upload, Bucket=self.bucket, Key=self.key
            )
            self._upload_id = mpu["UploadId"]
        part_number = len(self._parts) + 1
        body = bytes(self._buffer)
        self._buffer.clear()
        response = await asyncio.to_thread(
            self.client.upload_part,
            Bucket=self.bucket, Key=self.key, PartNumber=part_number,
            UploadId=self._upload_id, Body=body,
        )
        self._parts.append({"ETag": response["ETag"], "PartNumber": part_number})

    async def write(self, chunk: bytes) -> None:
        self._buffer.extend(chunk)
        if len(self._buffer) >= self.part_size:
            await self._flush()

    async def close(self) -> None:
        if self._upload_id is None:
            # Small object, a single PUT is enough
            await asyncio.to_thread(
                self.client.put_object, Bucket=self.bucket, Key=self.key, Body=bytes(self._buffer)
            )
            return
        if self._buffer:
            await self._flush()
        await asyncio.to_thread(
            self.client.complete_multipart_upload,
            Bucket=self.bucket, Key=self.key, UploadId=self._upload_id,
            MultipartUpload={"Parts": self._parts},
        )

    async def abort(self) -> None:
        if self._upload_id is not None:
            await asyncio.to_thread(
                self.client.abort_multipart_upload,
                Bucket=self.bucket, Key=self.key, UploadId=self._upload_id,
            )


class S3ObjectStore(ObjectStore):
    """S3 store: each destination is a bucket"""

    def __init__(self, region: str = "us-east-1", client=None, part_size: int = 16 * 1024 * 1024):
        if client is None:
            import boto3
            client = boto3.client("s3", region_name=region)
        self.client = client
        self.region = region
        self.part_size = max(part_size, 5 * 1024 * 1024)  # S3 minimum part size
        logger.info("S3ObjectStore initialized", region=region)

    @staticmethod
    def _is_missing(error) -> bool:
        code = error.response.get("Error", {}).get("Code", "")
        return code in ("404", "NoSuchKey", "NotFound", "NoSuchBucket")

    async def _head(self, destination: str, key: str) -> Optional[dict]:
        from botocore.exceptions import ClientError
        try:
            return await asyncio.to_thread(self.client.head_object, Bucket=destination, Key=key)
        except ClientError as e:
            if self._is_missing(e):
                return None
            raise

    async def exists(self, destination: str, key: str) -> bool:
        return await self._head(destination, key) is not None

    async def size(self, destination: str, key: str) -> Optional[int]:
        head = await self._head(destination, key)
        return head["ContentLength"] if head is not None else None

    async def read_bytes(self, destination: str, key: str) -> bytes:
        from botocore.exceptions import ClientError

        def _get():
            response = self.client.get_object(Bucket=destination, Key=key)
            return response["Body"].read()
        try:
            return await asyncio.to_thread(_get)
        except ClientError as e:
            if self._is_missing(e):
                raise ObjectNotFoundError(f"Object {key} not found in {destination}")
            raise

    async def write_bytes(self, destination: str, key: str, data: bytes,
                          content_type: str = "application/octet-stream") -> None:
        await asyncio.to_thread(
            self.client.put_object, Bucket=destination, Key=key, Body=data, ContentType=content_type
        )

    def open_writer(self, destination: str, key: str) -> ObjectWriter:
        return _S3ObjectWriter(self.client, destination, key, self.part_size)

    async def list_destinations(self) -> List[str]:
        response = await asyncio.to_thread(self.client.list_buckets)
        return [bucket["Name"] for bucket in response.get("Buckets", [])]

    async def destination_exists(self, destination: str) -> bool:
        from botocore.exceptions import ClientError
        try:
            await asyncio.to_thread(self.client.head_bucket, Bucket=destination)
            return True
        except ClientError as e:
            if self._is_missing(e):
                return False
            raise

    async def create_destination(self, destination: str) -> None:
        if await self.destination_exists(destination):
            raise DestinationExistsError(f"Destination {destination} already exists.")
        kwargs = {"Bucket": destination}
        if self.region != "us-east-1":
            kwargs["CreateBucketConfiguration"] = {"LocationConstraint": self.region}
        await asyncio.to_thread(self.client.create_bucket, **kwargs)
        logger.info("Destination created", destination=destination)


def create_object_store(settings) -> ObjectStore:
    """Build the object store selected by ``STORAGE_BACKEND``"""
    if settings.storage_backend == "s3":
        return S3ObjectStore(
            region=settings.s3_region,
            part_size=max(settings.transfer_chunk_size, 5 * 1024 * 1024),
        )
    return LocalObjectStore(Path(settings.storage_root))
