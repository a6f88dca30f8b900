"""
Object storage for mirrored blobs (chat media, recordings, voicemails, faxes, meetings).

Objects are addressed by a tenant-scoped path: ``{tenant_id}/{category}/{name}``.
"""

import asyncio
import logging
import posixpath
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from backupwiz.core.config import Settings, get_settings
from backupwiz.core.exceptions import ConfigurationError, StorageError
from backupwiz.core.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


def storage_path_for(tenant_id: int, category: str, filename: str, keep_dirs: bool = False) -> str:
    cleaned = filename.replace("\\", "/")
    if keep_dirs:
        safe_name = "/".join(p for p in cleaned.split("/") if p not in ("", ".", ".."))
    else:
        safe_name = posixpath.basename(cleaned)
    return f"{tenant_id}/{category}/{safe_name}"


@dataclass(frozen=True)
class StoredObject:
    path: str
    size: int


class ObjectStore:
    """Minimal async object store interface."""

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        raise NotImplementedError

    async def exists(self, path: str) -> bool:
        raise NotImplementedError


class LocalObjectStore(ObjectStore):
    """Filesystem-backed store for development and single-host installs."""

    def __init__(self, root: str):
        self.root = Path(root)

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageError(f"Refusing to write outside storage root: {path}")
        return target

    def _write(self, path: str, data: bytes) -> StoredObject:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return StoredObject(path=path, size=len(data))

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        try:
            return await asyncio.to_thread(self._write, path, data)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)


class SpacesObjectStore(ObjectStore):
    """S3-compatible store (DigitalOcean Spaces) via boto3, run off the event loop."""

    def __init__(
        self,
        *,
        endpoint: str,
        region: str,
        bucket: str,
        access_key: str,
        secret_key: str,
        retry_policy: Optional[RetryPolicy] = None,
        client=None,
    ):
        self.bucket = bucket
        self.retry_policy = retry_policy
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint,
            region_name=region,
            aws_access_key_id=access_key,
            aws_secret_access_key=secret_key,
            config=Config(signature_version="s3v4", retries={"max_attempts": 1}),
        )

    async def _put_once(self, path: str, data: bytes, content_type: Optional[str]) -> None:
        extra = {"ContentType": content_type} if content_type else {}
        await asyncio.to_thread(
            self._client.put_object, Bucket=self.bucket, Key=path, Body=data, ACL="private", **extra
        )

    async def put(self, path: str, data: bytes, content_type: Optional[str] = None) -> StoredObject:
        try:
            await call_with_retry(self._put_once, path, data, content_type, policy=self.retry_policy)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Upload of {path} to bucket {self.bucket} failed: {e}") from e
        return StoredObject(path=path, size=len(data))

    async def exists(self, path: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self.bucket, Key=path)
            return True
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Could not check {path} in bucket {self.bucket}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"Could not check {path} in bucket {self.bucket}: {e}") from e


def get_object_store(settings: Optional[Settings] = None) -> ObjectStore:
    settings = settings or get_settings()
    backend = settings.STORAGE_BACKEND.lower()
    if backend == "local":
        return LocalObjectStore(settings.LOCAL_STORAGE_DIR)
    if backend == "spaces":
        if not (settings.SPACES_ENDPOINT and settings.SPACES_BUCKET and settings.SPACES_KEY and settings.SPACES_SECRET):
            raise ConfigurationError("SPACES_ENDPOINT, SPACES_BUCKET, SPACES_KEY and SPACES_SECRET must be set")
        return SpacesObjectStore(
            endpoint=settings.SPACES_ENDPOINT,
            region=settings.SPACES_REGION,
            bucket=settings.SPACES_BUCKET,
            access_key=settings.SPACES_KEY,
            secret_key=settings.SPACES_SECRET,
            retry_policy=RetryPolicy.from_settings(settings),
        )
    raise ConfigurationError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
