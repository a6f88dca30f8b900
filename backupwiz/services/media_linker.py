"""
Links downloaded chat media files to the messages that carried them.

3CX stores attachments under a generated internal file name; the
``chat_message`` row records both that name and the public name the user
saw. Media is downloaded before the message it belongs to may have been
synced, so files land unlinked and are matched here on every cycle.
"""

import logging
import posixpath
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from backupwiz.core.utils import utcnow
from backupwiz.models.media_file import MediaFile
from backupwiz.models.message import Message

logger = logging.getLogger(__name__)

LOOKUP_CHUNK = 500


@dataclass(frozen=True)
class MediaLink:
    media_file_id: int
    message_id: int
    conversation_id: Optional[int]
    public_name: Optional[str]


@dataclass
class LinkPlan:
    links: List[MediaLink] = field(default_factory=list)
    already_linked: int = 0
    no_message: int = 0
    no_media: int = 0
    unmatched_files: int = 0

    @property
    def linked(self) -> int:
        return len(self.links)

    def summary(self) -> Dict[str, int]:
        return {
            "linked": self.linked,
            "already_linked": self.already_linked,
            "no_message": self.no_message,
            "no_media": self.no_media,
            "unmatched_files": self.unmatched_files,
        }


def _stem(name: str) -> str:
    return posixpath.splitext(posixpath.basename(name))[0]


def plan_media_links(
    mappings: Iterable[Mapping[str, Any]],
    media_files: Iterable[Any],
    message_lookup: Mapping[str, Tuple[int, Optional[int]]],
) -> LinkPlan:
    """Decide which media files to link to which messages.

    ``media_files`` are objects with ``id``, ``stored_filename`` and
    ``message_id``. ``message_lookup`` maps a 3CX message id to the stored
    ``(message id, conversation id)``. Files already linked are left alone.
    """
    files = list(media_files)
    by_name: Dict[str, Any] = {}
    by_stem: Dict[str, Any] = {}
    for media in files:
        by_name[media.stored_filename] = media
        by_stem.setdefault(_stem(media.stored_filename), media)

    plan = LinkPlan()
    seen = set()
    for mapping in mappings:
        internal = (mapping.get("internal_file_name") or "").replace("\\", "/")
        if not internal:
            continue
        media = by_name.get(posixpath.basename(internal)) or by_stem.get(_stem(internal))
        if media is None:
            plan.no_media += 1
            continue
        seen.add(media.id)
        if media.message_id is not None:
            plan.already_linked += 1
            continue
        target = message_lookup.get(str(mapping.get("threecx_message_id")))
        if target is None:
            plan.no_message += 1
            continue
        plan.links.append(MediaLink(
            media_file_id=media.id,
            message_id=target[0],
            conversation_id=target[1],
            public_name=mapping.get("public_file_name"),
        ))

    plan.unmatched_files = sum(1 for m in files if m.message_id is None and m.id not in seen)
    return plan


class MediaLinker:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def _message_lookup(self, session, tenant_id: int, ids: List[str]) -> Dict[str, Tuple[int, Optional[int]]]:
        lookup: Dict[str, Tuple[int, Optional[int]]] = {}
        unique = list(dict.fromkeys(ids))
        for start in range(0, len(unique), LOOKUP_CHUNK):
            result = await session.execute(
                select(Message.threecx_message_id, Message.id, Message.conversation_id).where(
                    Message.tenant_id == tenant_id,
                    Message.threecx_message_id.in_(unique[start:start + LOOKUP_CHUNK]),
                )
            )
            for threecx_id, message_id, conversation_id in result:
                lookup[threecx_id] = (message_id, conversation_id)
        return lookup

    async def link_tenant(self, tenant_id: int, mappings: List[Mapping[str, Any]]) -> LinkPlan:
        async with self.session_factory() as session:
            media = list((await session.execute(
                select(MediaFile).where(MediaFile.tenant_id == tenant_id)
            )).scalars())
            lookup = await self._message_lookup(
                session, tenant_id, [str(m.get("threecx_message_id")) for m in mappings]
            )
            plan = plan_media_links(mappings, media, lookup)

            now = utcnow()
            for link in plan.links:
                values: Dict[str, Any] = {
                    "message_id": link.message_id,
                    "conversation_id": link.conversation_id,
                    "linked_at": now,
                }
                if link.public_name:
                    values["file_name"] = link.public_name
                # Guarded so a concurrent linker cannot overwrite an existing link
                await session.execute(
                    update(MediaFile)
                    .where(MediaFile.id == link.media_file_id, MediaFile.message_id.is_(None))
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
            await session.commit()

        logger.info(f"Media linking for tenant {tenant_id}: {plan.summary()}")
        return plan
