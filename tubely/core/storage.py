from __future__ import annotations

import shutil
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings


class StorageError(RuntimeError):
    """Raised when the object store rejects or fails a write."""


@dataclass(slots=True)
class StoredObject:
    bucket: str
    key: str
    etag: str | None = None


class ObjectStore(ABC):
    """Durable destination for processed media.

    Implementations are blocking; async callers dispatch through a thread.
    """

    @abstractmethod
    def put(self, bucket: str, key: str, body: BinaryIO, content_type: str) -> StoredObject: ...

    @abstractmethod
    def object_url(self, bucket: str, key: str) -> str: ...


class LocalObjectStore(ObjectStore):
    """Filesystem-backed object store suitable for development."""

    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, bucket: str, key: str) -> Path:
        root = (self.base_path / bucket).resolve()
        target = (root / key).resolve()
        if root not in target.parents:
            raise StorageError(f"key escapes bucket root: {key}")
        return target

    def put(self, bucket: str, key: str, body: BinaryIO, content_type: str) -> StoredObject:
        target = self._resolve(bucket, key)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            with target.open("wb") as handle:
                shutil.copyfileobj(body, handle)
        except OSError as exc:
            raise StorageError(str(exc)) from exc
        return StoredObject(bucket=bucket, key=key)

    def object_url(self, bucket: str, key: str) -> str:
        return self._resolve(bucket, key).as_uri()


class S3ObjectStore(ObjectStore):
    """S3 (or S3-compatible) object store using boto3."""

    def __init__(self, *, region: str, endpoint_url: str | None = None, client: Any = None, **client_kwargs: Any):
        self.region = region
        self.endpoint_url = endpoint_url.rstrip("/") if endpoint_url else None
        if client is None:
            kwargs: dict[str, Any] = {"region_name": region, **client_kwargs}
            if self.endpoint_url:
                kwargs["endpoint_url"] = self.endpoint_url
            client = boto3.client("s3", **kwargs)
        self.client = client

    def put(self, bucket: str, key: str, body: BinaryIO, content_type: str) -> StoredObject:
        try:
            response = self.client.put_object(Bucket=bucket, Key=key, Body=body, ContentType=content_type)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(str(exc)) from exc
        etag = (response.get("ETag") or "").strip('"') or None
        return StoredObject(bucket=bucket, key=key, etag=etag)

    def object_url(self, bucket: str, key: str) -> str:
        if self.endpoint_url:
            return f"{self.endpoint_url}/{bucket}/{key}"
        return f"https://{bucket}.s3.{self.region}.amazonaws.com/{key}"


def get_object_store(settings: Settings) -> ObjectStore:
    if settings.storage_backend == "local":
        return LocalObjectStore(base_path=Path(settings.local_storage_base_path))
    if settings.storage_backend == "s3":
        credentials: dict[str, Any] = {}
        if settings.secrets.aws_access_key_id and settings.secrets.aws_secret_access_key:
            credentials = {
                "aws_access_key_id": settings.secrets.aws_access_key_id,
                "aws_secret_access_key": settings.secrets.aws_secret_access_key,
            }
        return S3ObjectStore(region=settings.s3_region, endpoint_url=settings.s3_endpoint_url, **credentials)
    raise ValueError(f"Unsupported storage backend: {settings.storage_backend}")


__all__ = [
    "ObjectStore",
    "LocalObjectStore",
    "S3ObjectStore",
    "StoredObject",
    "StorageError",
    "get_object_store",
]
