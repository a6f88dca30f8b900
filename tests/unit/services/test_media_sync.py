# tests/unit/services/test_media_sync.py
from datetime import datetime, timezone

import pytest
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import select

from backupwiz.core.exceptions import StorageError
from backupwiz.models.media_file import MediaFile
from backupwiz.models.voicemail import Voicemail
from backupwiz.services.media_sync import CHAT_MEDIA_CATEGORY, MediaSyncService, file_type_for
from backupwiz.storage import LocalObjectStore
from backupwiz.threecx.files import RemoteFile

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


def remote(path):
    return RemoteFile(path=path, name=path.rsplit("/", 1)[-1], size=3, modified_at=T0)


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(str(tmp_path))


@pytest.fixture
def media_service(session_factory, store, settings):
    return MediaSyncService(session_factory, store, settings)


@pytest.mark.parametrize(
    "mime, expected",
    [("image/png", "image"), ("video/mp4", "video"), ("audio/wav", "audio"), ("application/pdf", "document"),
     (None, "document")],
)
def test_file_type_for(mime, expected):
    assert file_type_for(mime) == expected


"""
1. Chat media
"""

@pytest.mark.asyncio
async def test_chat_media_copies_new_files_once(media_service, session_factory, tenant, tmp_path):
    root = tenant.chat_files_path
    files = MagicMock()
    files.list_files = AsyncMock(return_value=[remote(f"{root}/abc123.png"), remote(f"{root}/def456.pdf")])
    files.read_file = AsyncMock(return_value=b"abc")

    first = await media_service.sync_chat_media(tenant, files)
    second = await media_service.sync_chat_media(tenant, files)

    assert (first.transferred, first.bytes_transferred) == (2, 6)
    assert (second.transferred, second.skipped) == (0, 2)
    assert (tmp_path / str(tenant.id) / CHAT_MEDIA_CATEGORY / "abc123.png").exists()

    async with session_factory() as session:
        rows = (await session.execute(select(MediaFile).order_by(MediaFile.file_name))).scalars().all()
    assert [(r.file_name, r.file_type, r.message_id) for r in rows] == [
        ("abc123.png", "image", None),
        ("def456.pdf", "document", None),
    ]
    assert rows[0].storage_path == f"{tenant.id}/{CHAT_MEDIA_CATEGORY}/abc123.png"


@pytest.mark.asyncio
async def test_chat_media_download_failure_is_counted(media_service, tenant):
    root = tenant.chat_files_path
    files = MagicMock()
    files.list_files = AsyncMock(return_value=[remote(f"{root}/a.png"), remote(f"{root}/b.png")])
    files.read_file = AsyncMock(side_effect=[StorageError("gone"), b"abc"])

    result = await media_service.sync_chat_media(tenant, files)

    assert (result.transferred, result.failed) == (1, 1)


@pytest.mark.asyncio
async def test_chat_media_same_name_in_subdirectories(media_service, session_factory, tenant, tmp_path):
    root = tenant.chat_files_path
    files = MagicMock()
    files.list_files = AsyncMock(return_value=[
        remote(f"{root}/2025-02/photo.jpg"),
        remote(f"{root}/2025-03/photo.jpg"),
    ])
    files.read_file = AsyncMock(return_value=b"abc")

    first = await media_service.sync_chat_media(tenant, files)
    second = await media_service.sync_chat_media(tenant, files)

    assert first.transferred == 2
    assert (second.transferred, second.skipped) == (0, 2)
    async with session_factory() as session:
        rows = (await session.execute(select(MediaFile).order_by(MediaFile.source_path))).scalars().all()
    assert [(r.source_path, r.stored_filename) for r in rows] == [
        ("2025-02/photo.jpg", "photo.jpg"),
        ("2025-03/photo.jpg", "photo.jpg"),
    ]
    assert rows[1].storage_path == f"{tenant.id}/{CHAT_MEDIA_CATEGORY}/2025-03/photo.jpg"
    assert (tmp_path / str(tenant.id) / CHAT_MEDIA_CATEGORY / "2025-02" / "photo.jpg").exists()


@pytest.mark.asyncio
async def test_chat_media_without_path(media_service, make_tenant):
    tenant = await make_tenant("initech", chat_files_path=None)
    files = MagicMock()
    files.list_files = AsyncMock()

    result = await media_service.sync_chat_media(tenant, files)

    assert result.transferred == 0
    files.list_files.assert_not_awaited()


"""
2. File mirror for entity rows
"""

@pytest.mark.asyncio
async def test_mirror_fills_storage_path(media_service, session_factory, tenant):
    async with session_factory() as session:
        session.add_all([
            Voicemail(tenant_id=tenant.id, threecx_voicemail_id="100/a.wav", received_at=T0,
                      source_path="/vm/100/a.wav", mime_type="audio/x-wav"),
            Voicemail(tenant_id=tenant.id, threecx_voicemail_id="100/b.wav", received_at=T0,
                      source_path="/vm/100/b.wav"),
            Voicemail(tenant_id=tenant.id, threecx_voicemail_id="100/c.wav", received_at=T0,
                      source_path=None),
        ])
        await session.commit()

    files = MagicMock()
    files.read_file = AsyncMock(side_effect=[b"RIFF", StorageError("permission denied")])

    result = await media_service.mirror_files(tenant, files, Voicemail, "voicemails")

    assert (result.transferred, result.failed) == (1, 1)
    async with session_factory() as session:
        rows = {
            v.threecx_voicemail_id: v
            for v in (await session.execute(select(Voicemail))).scalars()
        }
    first = rows["100/a.wav"]
    assert first.storage_path == f"{tenant.id}/voicemails/{first.id}-a.wav"
    assert first.file_size_bytes == 4
    assert rows["100/b.wav"].storage_path is None

    files.read_file = AsyncMock(return_value=b"RIFF")
    retry = await media_service.mirror_files(tenant, files, Voicemail, "voicemails")
    assert retry.transferred == 1
    files.read_file.assert_awaited_once_with("/vm/100/b.wav")
