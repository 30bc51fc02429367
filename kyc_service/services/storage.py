"""
Blob storage for encrypted KYC files.

Two backends share the same small async surface (write/read/delete). Blocking
filesystem and boto3 calls run in the default executor.
Keys are always generated by the custodian, never taken from user input.
Backend failures surface as ``DatabaseError``; a missing blob is ``NotFound``.
"""
import asyncio
import io
import logging
from functools import partial
from pathlib import Path
from typing import Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from kyc_service.core.config import settings
from kyc_service.core.errors import ConfigurationError, DatabaseError, NotFound

log = logging.getLogger(__name__)


async def _run_sync(func, *args, **kwargs):
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, partial(func, *args, **kwargs))


def storage_failure(operation: str, key: str, exc: Exception) -> DatabaseError:
    log.error(f"Document storage {operation} failed for {key}: {exc!r}")
    return DatabaseError(f"Document storage {operation} failed for {key}")


class DocumentStore(Protocol):
    async def write(self, key: str, data: bytes) -> None: ...

    async def read(self, key: str) -> bytes: ...

    async def delete(self, key: str) -> None: ...


class LocalDocumentStore:
    def __init__(self, base_path: str | Path):
        self.base_path = Path(base_path)

    def _path(self, key: str) -> Path:
        path = (self.base_path / key).resolve()
        if self.base_path.resolve() not in path.parents:
            log.warning(f"Rejected storage key outside base path: {key}")
            raise ConfigurationError(f"Storage key escapes base path: {key}")
        return path

    def _write(self, key: str, data: bytes) -> None:
        path = self._path(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    async def write(self, key: str, data: bytes) -> None:
        try:
            await _run_sync(self._write, key, data)
        except OSError as e:
            raise storage_failure("write", key, e) from e

    async def read(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await _run_sync(path.read_bytes)
        except FileNotFoundError:
            raise NotFound("Document file not found") from None
        except OSError as e:
            raise storage_failure("read", key, e) from e

    async def delete(self, key: str) -> None:
        try:
            await _run_sync(self._path(key).unlink, missing_ok=True)
        except OSError as e:
            raise storage_failure("delete", key, e) from e


class S3DocumentStore:
    def __init__(self, bucket: str, prefix: str = "", client=None):
        if not bucket:
            raise ConfigurationError("BUCKET_NAME is not configured for S3 document storage")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self.s3 = client or boto3.client("s3", region_name=settings.AWS_REGION)

    def _key(self, key: str) -> str:
        return f"{self.prefix}/{key}" if self.prefix else key

    async def write(self, key: str, data: bytes) -> None:
        try:
            await _run_sync(
                self.s3.upload_fileobj,
                io.BytesIO(data),
                self.bucket,
                self._key(key),
                ExtraArgs={"ContentType": "application/octet-stream", "ServerSideEncryption": "AES256"},
            )
        except (ClientError, BotoCoreError) as e:
            raise storage_failure("write", self._key(key), e) from e

    def _read(self, key: str) -> bytes:
        try:
            obj = self.s3.get_object(Bucket=self.bucket, Key=self._key(key))
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise NotFound("Document file not found") from None
            raise
        return obj["Body"].read()

    async def read(self, key: str) -> bytes:
        try:
            return await _run_sync(self._read, key)
        except (ClientError, BotoCoreError) as e:
            raise storage_failure("read", self._key(key), e) from e

    async def delete(self, key: str) -> None:
        try:
            await _run_sync(self.s3.delete_object, Bucket=self.bucket, Key=self._key(key))
        except (ClientError, BotoCoreError) as e:
            raise storage_failure("delete", self._key(key), e) from e


def get_document_store() -> DocumentStore:
    backend = settings.DOCUMENT_STORAGE_BACKEND.lower()
    if backend == "s3":
        return S3DocumentStore(settings.BUCKET_NAME, settings.DOCUMENT_PREFIX)
    if backend == "local":
        return LocalDocumentStore(settings.DOCUMENT_STORAGE_PATH)
    raise ConfigurationError(f"Unknown DOCUMENT_STORAGE_BACKEND: {settings.DOCUMENT_STORAGE_BACKEND}")
