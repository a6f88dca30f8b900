"""
Remote file access on the 3CX host over SFTP.

Voicemails, faxes and meeting recordings have no reliable database table on
the 3CX side; they are discovered by listing their directories and the
metadata is recovered from the file names.
"""

import logging
import posixpath
import re
import stat
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, List, Optional

import asyncssh

from backupwiz.core.exceptions import StorageError
from backupwiz.core.retry import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS = {".wav", ".mp3", ".ogg", ".m4a"}
FAX_EXTENSIONS = {".pdf", ".tif", ".tiff"}
MEETING_EXTENSIONS = {".mp4", ".webm", ".mkv", ".mp3", ".wav", ".m4a"}
VIDEO_EXTENSIONS = {".mp4", ".webm", ".mkv", ".mov"}

_STAMP = re.compile(r"(?<!\d)(\d{8})_(\d{6})(?!\d)")
_DATE_ONLY = re.compile(r"(?<!\d)(\d{8})(?!\d)")


@dataclass(frozen=True)
class RemoteFile:
    path: str
    name: str
    size: int
    modified_at: datetime

    @property
    def suffix(self) -> str:
        return posixpath.splitext(self.name)[1].lower()


class RemoteFiles:
    """Thin wrapper over an asyncssh SFTP client."""

    def __init__(self, sftp: asyncssh.SFTPClient, retry_policy: Optional[RetryPolicy] = None):
        self.sftp = sftp
        self.retry_policy = retry_policy

    async def list_files(self, root: str, extensions: Optional[Iterable[str]] = None) -> List[RemoteFile]:
        """Recursively list regular files under ``root``, oldest first."""
        wanted = {e.lower() for e in extensions} if extensions else None
        found: List[RemoteFile] = []
        try:
            if not await self.sftp.exists(root):
                logger.warning(f"Remote directory does not exist: {root}")
                return []
            await self._walk(root, wanted, found)
        except (asyncssh.SFTPError, OSError) as e:
            raise StorageError(f"Failed to list remote directory {root}: {e}") from e
        found.sort(key=lambda f: (f.modified_at, f.path))
        return found

    async def _walk(self, directory: str, wanted, found: List[RemoteFile]) -> None:
        async for entry in self.sftp.scandir(directory):
            if entry.filename in (".", ".."):
                continue
            path = posixpath.join(directory, entry.filename)
            mode = entry.attrs.permissions or 0
            if stat.S_ISDIR(mode):
                await self._walk(path, wanted, found)
                continue
            if not stat.S_ISREG(mode):
                continue
            if wanted and posixpath.splitext(entry.filename)[1].lower() not in wanted:
                continue
            found.append(RemoteFile(
                path=path,
                name=entry.filename,
                size=entry.attrs.size or 0,
                modified_at=datetime.fromtimestamp(entry.attrs.mtime or 0, tz=timezone.utc),
            ))

    async def _read(self, path: str) -> bytes:
        async with self.sftp.open(path, "rb") as handle:
            return await handle.read()

    async def read_file(self, path: str) -> bytes:
        try:
            return await call_with_retry(self._read, path, policy=self.retry_policy)
        except (asyncssh.SFTPError, OSError) as e:
            raise StorageError(f"Failed to download {path}: {e}") from e


# --- File name metadata ---------------------------------------------------

def parse_stamp(filename: str) -> Optional[datetime]:
    match = _STAMP.search(filename)
    if match:
        return datetime.strptime(match.group(1) + match.group(2), "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)
    match = _DATE_ONLY.search(filename)
    if match:
        try:
            return datetime.strptime(match.group(1), "%Y%m%d").replace(tzinfo=timezone.utc)
        except ValueError:
            return None
    return None


def parse_voicemail_path(path: str) -> dict:
    """``/Voicemail/100/vm_20240115_143022.wav`` -> extension 100, timestamp, urgency."""
    parts = path.split("/")
    extension = None
    for part in reversed(parts[:-1]):
        if re.fullmatch(r"\d{2,4}", part):
            extension = part
            break
    filename = parts[-1]
    return {
        "extension": extension,
        "is_urgent": "urgent" in filename.lower(),
        "timestamp": parse_stamp(filename),
    }


def parse_fax_filename(filename: str) -> dict:
    lowered = filename.lower()
    direction = None
    if "recv" in lowered or "in" in lowered:
        direction = "inbound"
    elif "sent" in lowered or "out" in lowered:
        direction = "outbound"
    phone = re.search(r"(\+?\d{10,15})", filename)
    return {
        "direction": direction,
        "remote_number": phone.group(1) if phone else None,
        "timestamp": parse_stamp(filename),
    }


def parse_meeting_filename(filename: str) -> dict:
    stem = posixpath.splitext(filename)[0]
    result = {"meeting_id": None, "meeting_name": None, "host_extension": None, "timestamp": parse_stamp(stem)}

    conference = re.fullmatch(r"Conference_ext(\d+)_(\d{8})_(\d{6})", stem)
    webmeeting = re.fullmatch(r"Webmeeting_(\w+?)_(\d{8})", stem)
    named = re.fullmatch(r"(.+?)_(\d{8})_(\d{6})", stem)
    if conference:
        result["host_extension"] = conference.group(1)
        result["meeting_name"] = f"Conference (ext {conference.group(1)})"
    elif webmeeting:
        result["meeting_id"] = webmeeting.group(1)
        result["meeting_name"] = f"Web Meeting {webmeeting.group(1)}"
    elif named:
        result["meeting_name"] = named.group(1).replace("_", " ")
    else:
        result["meeting_name"] = stem.split("_")[0] or stem
    return result
