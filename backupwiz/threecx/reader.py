"""
Typed read access to one tenant's 3CX source for the duration of a sync cycle.
"""

import logging
from typing import Dict, Iterable, List, Optional, Sequence, Set

from backupwiz.core.exceptions import SourceQueryError, StorageError
from backupwiz.threecx import queries
from backupwiz.threecx.connection import SourceDatabase
from backupwiz.threecx.files import RemoteFile, RemoteFiles
from backupwiz.threecx.queries import Cursor

logger = logging.getLogger(__name__)


def _chunks(items: Sequence[str], size: int) -> Iterable[List[str]]:
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


class ThreeCXReader:
    def __init__(self, db: SourceDatabase, files: Optional[RemoteFiles] = None, id_chunk_size: int = 500):
        self.db = db
        self.files = files
        self.id_chunk_size = id_chunk_size
        self._listings: Dict[str, List[RemoteFile]] = {}

    # ------------------------------------------------------------------
    # Chat messages
    # ------------------------------------------------------------------
    async def live_messages(self, cursor: Optional[Cursor], limit: int) -> List[dict]:
        sql, params = queries.live_messages(cursor, limit)
        return await self.db.fetch_all(sql, params)

    async def history_messages(self, cursor: Optional[Cursor], limit: int) -> List[dict]:
        sql, params = queries.history_messages(cursor, limit)
        return await self.db.fetch_all(sql, params)

    async def live_messages_by_id(self, ids: Sequence[str]) -> List[dict]:
        rows: List[dict] = []
        for chunk in _chunks(list(ids), self.id_chunk_size):
            rows.extend(await self.db.fetch_all(queries.LIVE_MESSAGES_BY_ID, {"ids": chunk}))
        return rows

    async def history_messages_by_id(self, ids: Sequence[str]) -> List[dict]:
        rows: List[dict] = []
        for chunk in _chunks(list(ids), self.id_chunk_size):
            rows.extend(await self.db.fetch_all(queries.HISTORY_MESSAGES_BY_ID, {"ids": chunk}))
        return rows

    async def live_message_ids(self) -> Set[str]:
        return {row["message_id"] for row in await self.db.fetch_all(queries.LIVE_MESSAGE_IDS)}

    async def history_message_ids(self) -> Set[str]:
        return {row["message_id"] for row in await self.db.fetch_all(queries.HISTORY_MESSAGE_IDS)}

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------
    async def live_conversations(self) -> List[dict]:
        return await self.db.fetch_all(queries.LIVE_CONVERSATIONS)

    async def history_conversations(self) -> List[dict]:
        return await self.db.fetch_all(queries.HISTORY_CONVERSATIONS)

    async def conversation_members(self, conversation_ids: Iterable[str]) -> List[dict]:
        ids = sorted({str(cid) for cid in conversation_ids if cid is not None})
        rows: List[dict] = []
        for chunk in _chunks(ids, self.id_chunk_size):
            rows.extend(await self.db.fetch_all(queries.CONVERSATION_MEMBERS, {"conversation_ids": chunk}))
        return rows

    async def file_mappings(self) -> List[dict]:
        return await self.db.fetch_all(queries.FILE_MAPPINGS)

    # ------------------------------------------------------------------
    # Other entities
    # ------------------------------------------------------------------
    async def extensions(self) -> List[dict]:
        try:
            return await self.db.fetch_all(queries.EXTENSIONS_V20)
        except SourceQueryError as e:
            logger.warning(f"V20 extension query failed, trying legacy schema: {e}")
            return await self.db.fetch_all(queries.EXTENSIONS_LEGACY)

    async def call_logs(self, cursor: Optional[Cursor], limit: int) -> List[dict]:
        sql, params = queries.call_logs(cursor, limit)
        return await self.db.fetch_all(sql, params)

    async def recordings(self, cursor: Optional[Cursor], limit: int) -> List[dict]:
        sql, params = queries.recordings(cursor, limit)
        return await self.db.fetch_all(sql, params)

    # ------------------------------------------------------------------
    # Remote files
    # ------------------------------------------------------------------
    def require_files(self) -> RemoteFiles:
        if self.files is None:
            raise StorageError("SFTP is not available for this sync cycle")
        return self.files

    async def remote_files(
        self,
        root: str,
        extensions: Iterable[str],
        cursor: Optional[Cursor],
        limit: int,
    ) -> List[RemoteFile]:
        """Page through files under ``root`` ordered by (mtime, path)."""
        if root not in self._listings:
            self._listings[root] = await self.require_files().list_files(root, extensions)
        listing = self._listings[root]
        if cursor is not None and cursor.ts is not None:
            if cursor.key is None:
                listing = [f for f in listing if f.modified_at >= cursor.ts]
            else:
                listing = [f for f in listing if (f.modified_at, f.path) > (cursor.ts, cursor.key)]
        return listing[:limit]
