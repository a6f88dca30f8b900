"""
Copies binary content off the 3CX host into object storage.

Chat attachments become MediaFile rows (linked to messages later by the
``MediaLinker``). Recordings, voicemails, faxes and meeting recordings are
already rows by the time they get here; mirroring only fills in their
``storage_path``.
"""

import hashlib
import logging
import mimetypes
import posixpath
from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from backupwiz.core.config import Settings, get_settings
from backupwiz.core.exceptions import DestinationWriteError, StorageError
from backupwiz.models.media_file import MediaFile
from backupwiz.models.tenant import Tenant
from backupwiz.storage.object_store import ObjectStore, storage_path_for
from backupwiz.threecx.files import RemoteFiles

logger = logging.getLogger(__name__)

CHAT_MEDIA_CATEGORY = "chat-media"


@dataclass
class TransferResult:
    transferred: int = 0
    skipped: int = 0
    failed: int = 0
    bytes_transferred: int = 0

    def summary(self) -> Dict[str, int]:
        return {
            "transferred": self.transferred,
            "skipped": self.skipped,
            "failed": self.failed,
            "bytes": self.bytes_transferred,
        }


def file_type_for(mime_type: Optional[str]) -> str:
    if not mime_type:
        return "document"
    major = mime_type.split("/", 1)[0]
    if major in ("image", "video", "audio"):
        return major
    return "document"


class MediaSyncService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        store: ObjectStore,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.store = store
        self.settings = settings or get_settings()

    async def sync_chat_media(self, tenant: Tenant, files: RemoteFiles) -> TransferResult:
        """Download chat attachments not yet stored for the tenant."""
        result = TransferResult()
        root = tenant.chat_files_path
        if not root:
            logger.info(f"Tenant {tenant.slug} has no chat files path; skipping chat media")
            return result

        remote = await files.list_files(root)
        async with self.session_factory() as session:
            stored = set(await session.scalars(
                select(MediaFile.source_path).where(MediaFile.tenant_id == tenant.id)
            ))

        for remote_file in remote:
            relative = posixpath.relpath(remote_file.path, root)
            if relative in stored:
                result.skipped += 1
                continue
            try:
                data = await files.read_file(remote_file.path)
                mime_type = mimetypes.guess_type(remote_file.name)[0]
                path = storage_path_for(tenant.id, CHAT_MEDIA_CATEGORY, relative, keep_dirs=True)
                stored_object = await self.store.put(path, data, mime_type)
            except StorageError as e:
                result.failed += 1
                logger.warning(f"Chat media {remote_file.path} for tenant {tenant.slug} not copied: {e}")
                continue

            await self._record_media(tenant, remote_file.name, relative, data, mime_type, stored_object.path)
            stored.add(relative)
            result.transferred += 1
            result.bytes_transferred += stored_object.size

        logger.info(f"Chat media for tenant {tenant.slug}: {result.summary()}")
        return result

    async def _record_media(
        self,
        tenant: Tenant,
        name: str,
        relative: str,
        data: bytes,
        mime_type: Optional[str],
        path: str,
    ) -> None:
        async with self.session_factory() as session:
            session.add(MediaFile(
                tenant_id=tenant.id,
                file_name=name,
                stored_filename=name,
                source_path=relative,
                content_hash=hashlib.sha256(data).hexdigest(),
                mime_type=mime_type,
                file_type=file_type_for(mime_type),
                file_size_bytes=len(data),
                storage_path=path,
            ))
            try:
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DestinationWriteError(f"Could not record media file {name}: {e}") from e

    async def mirror_files(self, tenant: Tenant, files: RemoteFiles, model, category: str) -> TransferResult:
        """Copy files for rows of ``model`` that have a source path but no stored copy yet."""
        result = TransferResult()
        async with self.session_factory() as session:
            pending = list((await session.execute(
                select(model)
                .where(
                    model.tenant_id == tenant.id,
                    model.storage_path.is_(None),
                    model.source_path.is_not(None),
                )
                .order_by(model.id)
                .limit(self.settings.SYNC_BATCH_SIZE)
            )).scalars())

            for row in pending:
                try:
                    data = await files.read_file(row.source_path)
                    path = storage_path_for(tenant.id, category, f"{row.id}-{posixpath.basename(row.source_path)}")
                    stored_object = await self.store.put(path, data, row.mime_type)
                except StorageError as e:
                    result.failed += 1
                    logger.warning(f"{category} file {row.source_path} for tenant {tenant.slug} not copied: {e}")
                    continue
                row.storage_path = stored_object.path
                row.file_size_bytes = stored_object.size
                await session.commit()
                result.transferred += 1
                result.bytes_transferred += stored_object.size

        if pending:
            logger.info(f"Mirrored {category} for tenant {tenant.slug}: {result.summary()}")
        return result
