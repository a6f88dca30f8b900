"""
Per-entity sync strategies.

Each strategy names how one sync type is read from the 3CX source, how a
source record maps onto its destination row, and which natural key the row
is upserted on. The driver in ``sync_service`` is the same for all of them.

Keys starting with an underscore in a mapped row are side data for the
``prepare``/``after_upsert`` hooks and are never written to the model.
"""

import logging
import mimetypes
import posixpath
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backupwiz.core.config import Settings
from backupwiz.core.enums import Provenance, SyncType
from backupwiz.core.exceptions import RecordMappingError
from backupwiz.core.utils import coerce_datetime, ensure_utc, utcnow, values_differ
from backupwiz.models.call_log import CallLog
from backupwiz.models.conversation import Conversation, Participant
from backupwiz.models.extension import Extension
from backupwiz.models.fax import Fax
from backupwiz.models.meeting import MeetingRecording
from backupwiz.models.message import Message
from backupwiz.models.recording import CallRecording
from backupwiz.models.tenant import Tenant
from backupwiz.models.voicemail import Voicemail
from backupwiz.services.reconciliation import (
    MembershipIndex,
    ReconciliationResult,
    channel_for,
    detect_media,
    divergence,
    normalize_history_conversation,
    normalize_history_message,
    normalize_live_conversation,
    normalize_live_message,
    reconcile,
)
from backupwiz.services.upsert import load_existing
from backupwiz.threecx.files import (
    AUDIO_EXTENSIONS,
    FAX_EXTENSIONS,
    MEETING_EXTENSIONS,
    VIDEO_EXTENSIONS,
    parse_fax_filename,
    parse_meeting_filename,
    parse_voicemail_path,
)
from backupwiz.threecx.queries import Cursor
from backupwiz.threecx.reader import ThreeCXReader

logger = logging.getLogger(__name__)

# Extension dn_type on cl_participants
_DN_TYPE_EXTENSION = 0


@dataclass
class SourcePage:
    """One ordered batch of source records.

    ``max_timestamp`` is the watermark candidate for the page; pages that are
    not part of the incremental stream (full scans, backfills) leave it None.
    """
    records: List[Dict[str, Any]]
    max_timestamp: Optional[datetime] = None
    reconciliation: Optional[ReconciliationResult] = None


@dataclass
class SyncContext:
    tenant: Tenant
    reader: ThreeCXReader
    session_factory: async_sessionmaker
    settings: Settings
    watermark: Optional[datetime] = None
    last_full_reconcile_at: Optional[datetime] = None
    force_full_reconcile: bool = False
    notes: List[str] = field(default_factory=list)
    full_reconcile_done: bool = False

    @property
    def batch_size(self) -> int:
        return self.settings.SYNC_BATCH_SIZE

    @property
    def tenant_id(self) -> int:
        return self.tenant.id

    def full_reconcile_due(self, now: datetime) -> bool:
        if self.force_full_reconcile or self.last_full_reconcile_at is None:
            return True
        interval = timedelta(minutes=self.settings.FULL_RECONCILE_INTERVAL_MINUTES)
        return now - ensure_utc(self.last_full_reconcile_at) >= interval


FetchFn = Callable[[SyncContext], AsyncIterator[SourcePage]]
RowFn = Callable[[Dict[str, Any], SyncContext], Dict[str, Any]]
PrepareFn = Callable[[AsyncSession, SyncContext, List[Dict[str, Any]], List[Dict[str, Any]]], Awaitable[None]]
AfterFn = Callable[
    [AsyncSession, SyncContext, List[Dict[str, Any]], List[Dict[str, Any]], Dict[Any, Any]],
    Awaitable[None],
]


@dataclass(frozen=True)
class EntityStrategy:
    sync_type: SyncType
    model: Any
    natural_key: str
    fetch: FetchFn
    to_row: RowFn
    backup_flag: Optional[str] = None
    prepare: Optional[PrepareFn] = None
    after_upsert: Optional[AfterFn] = None
    # Blob category under the tenant's storage prefix; None for row-only entities
    file_category: Optional[str] = None

    @property
    def name(self) -> str:
        return self.sync_type.value

    def enabled_for(self, tenant: Tenant) -> bool:
        if self.backup_flag is None:
            return True
        return bool(getattr(tenant, self.backup_flag, False))


def split_side_data(row: Dict[str, Any]) -> Dict[str, Any]:
    """Remove and return the underscore keys of a mapped row."""
    return {name: row.pop(name) for name in [k for k in row if k.startswith("_")]}


def _required_timestamp(record: Dict[str, Any], field_name: str, label: str) -> datetime:
    try:
        value = coerce_datetime(record.get(field_name))
    except (TypeError, ValueError) as e:
        raise RecordMappingError(f"{label}: unreadable {field_name} {record.get(field_name)!r}") from e
    if value is None:
        raise RecordMappingError(f"{label}: missing {field_name}")
    return value


def _optional_timestamp(record: Dict[str, Any], field_name: str) -> Optional[datetime]:
    try:
        return coerce_datetime(record.get(field_name))
    except (TypeError, ValueError):
        return None


def _page_max(records: List[Dict[str, Any]], field_name: str) -> Optional[datetime]:
    stamps = [ts for ts in (_optional_timestamp(r, field_name) for r in records) if ts is not None]
    return max(stamps) if stamps else None


def _record_payload(result: ReconciliationResult) -> List[Dict[str, Any]]:
    return [dict(record.data, _provenance=record.provenance.value) for record in result.records]


def _guess_mime(filename: Optional[str]) -> Optional[str]:
    if not filename:
        return None
    return mimetypes.guess_type(filename)[0]


async def _keyset_pages(
    ctx: SyncContext,
    fetch_page: Callable[[Optional[Cursor], int], Awaitable[List[Dict[str, Any]]]],
    ts_field: str,
    key_field: str,
) -> AsyncIterator[SourcePage]:
    """Walk a single source stream from the watermark in (timestamp, key) order."""
    cursor = Cursor(ts=ctx.watermark)
    limit = ctx.batch_size
    while True:
        rows = [dict(row) for row in await fetch_page(cursor, limit)]
        if rows:
            yield SourcePage(records=rows, max_timestamp=_page_max(rows, ts_field))
        if len(rows) < limit:
            return
        last = rows[-1]
        last_ts = _optional_timestamp(last, ts_field)
        if last_ts is None:
            logger.warning(f"Tenant {ctx.tenant_id}: {key_field} {last[key_field]} has no {ts_field}; stopping")
            return
        cursor = Cursor(ts=last_ts, key=str(last[key_field]))


# ----------------------------------------------------------------------
# Chat messages
# ----------------------------------------------------------------------
async def _reconcile_message_rows(
    ctx: SyncContext,
    live_raw: List[Dict[str, Any]],
    history_raw: List[Dict[str, Any]],
    *,
    live_page_full: bool = False,
    history_page_full: bool = False,
) -> ReconciliationResult:
    live = [normalize_live_message(row) for row in live_raw]
    history = [normalize_history_message(row) for row in history_raw]
    history_ids = {row["message_id"] for row in history}
    live_only_conversations = {
        row["conversation_id"] for row in live if row["message_id"] not in history_ids
    }
    members = await ctx.reader.conversation_members(live_only_conversations) if live_only_conversations else []
    index = MembershipIndex(members)
    return reconcile(
        live,
        history,
        key_field="message_id",
        ts_field="time_sent",
        enrich_live=index.enrich_message,
        live_page_full=live_page_full,
        history_page_full=history_page_full,
    )


async def fetch_messages(ctx: SyncContext) -> AsyncIterator[SourcePage]:
    cursor = Cursor(ts=ctx.watermark)
    limit = ctx.batch_size
    while True:
        live_raw = await ctx.reader.live_messages(cursor, limit)
        history_raw = await ctx.reader.history_messages(cursor, limit)
        live_full = len(live_raw) >= limit
        history_full = len(history_raw) >= limit
        result = await _reconcile_message_rows(
            ctx, live_raw, history_raw, live_page_full=live_full, history_page_full=history_full
        )
        logger.debug(f"Tenant {ctx.tenant_id} message page: {result.summary()}")
        if result.records:
            yield SourcePage(
                records=_record_payload(result),
                max_timestamp=result.max_timestamp,
                reconciliation=result,
            )
        if not live_full and not history_full:
            break
        position = result.last_position
        if position is None:
            break
        cursor = Cursor(ts=position[0], key=position[1])

    if ctx.full_reconcile_due(utcnow()):
        async for page in backfill_messages(ctx):
            yield page
        ctx.full_reconcile_done = True


async def backfill_messages(ctx: SyncContext) -> AsyncIterator[SourcePage]:
    """Re-read messages the incremental stream missed or saw from one side only.

    Missing ids are backfilled. Rows stored from one representation that
    now exist in the other are re-reconciled so the history values apply.
    """
    live_ids = await ctx.reader.live_message_ids()
    history_ids = await ctx.reader.history_message_ids()
    diverged = divergence(live_ids, history_ids)

    async with ctx.session_factory() as session:
        result = await session.execute(
            select(Message.threecx_message_id, Message.source_provenance)
            .where(Message.tenant_id == ctx.tenant_id)
        )
        stored = dict(result.all())
    missing = (live_ids | history_ids) - set(stored)
    one_sided = {
        message_id
        for message_id, provenance in stored.items()
        if (provenance == Provenance.LIVE_ONLY.value and message_id in history_ids)
        or (provenance == Provenance.HISTORY_ONLY.value and message_id in live_ids)
    }
    pending = sorted(missing | one_sided)
    ctx.notes.append(
        f"full check: {len(diverged)} diverged, {len(missing)} missing, {len(one_sided)} re-reconciled"
    )
    if pending:
        logger.info(
            f"Tenant {ctx.tenant_id}: backfilling {len(missing)} and re-reconciling "
            f"{len(one_sided)} messages ({len(diverged)} diverged)"
        )

    for start in range(0, len(pending), ctx.batch_size):
        chunk = pending[start:start + ctx.batch_size]
        live_raw = await ctx.reader.live_messages_by_id([i for i in chunk if i in live_ids])
        history_raw = await ctx.reader.history_messages_by_id([i for i in chunk if i in history_ids])
        result = await _reconcile_message_rows(ctx, live_raw, history_raw)
        if result.records:
            yield SourcePage(records=_record_payload(result), reconciliation=result)


def message_row(record: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    label = f"message {record.get('message_id')}"
    sent_at = _required_timestamp(record, "time_sent", label)
    if not record.get("conversation_id"):
        raise RecordMappingError(f"{label}: no conversation")
    has_media, message_type = detect_media(record.get("message"), record.get("internal_file_name"))
    return {
        "threecx_message_id": record["message_id"],
        "sender_extension": record.get("sender_extension"),
        "sender_name": record.get("sender_name"),
        "sender_type": "external" if record.get("is_external") and not record.get("sender_extension") else "extension",
        "message_text": record.get("message"),
        "message_type": message_type,
        "has_media": has_media,
        "sent_at": sent_at,
        "source_provenance": record["_provenance"],
        "_conversation_key": record["conversation_id"],
        "_is_external": bool(record.get("is_external")),
    }


async def resolve_conversations(
    session: AsyncSession,
    ctx: SyncContext,
    rows: List[Dict[str, Any]],
    side: List[Dict[str, Any]],
) -> None:
    """Point each message at its conversation, creating stubs for unseen ones."""
    keys = list(dict.fromkeys(extra["_conversation_key"] for extra in side))
    conversations = await load_existing(session, Conversation, ctx.tenant_id, "threecx_conversation_id", keys)
    stubs = 0
    for key in keys:
        if key not in conversations:
            stub = Conversation(
                tenant_id=ctx.tenant_id,
                threecx_conversation_id=key,
                channel_type=channel_for(None),
                message_count=0,
            )
            session.add(stub)
            conversations[key] = stub
            stubs += 1
    if stubs:
        await session.flush()
        logger.info(f"Tenant {ctx.tenant_id}: created {stubs} stub conversations")
    for row, extra in zip(rows, side):
        row["conversation_id"] = conversations[extra["_conversation_key"]].id


async def store_senders(
    session: AsyncSession,
    ctx: SyncContext,
    rows: List[Dict[str, Any]],
    side: List[Dict[str, Any]],
    objects: Dict[Any, Any],
) -> None:
    """Senders missing from their conversation's participant list join it."""
    entries = [
        (
            row["conversation_id"],
            row["sender_extension"],
            row.get("sender_name"),
            "external" if extra["_is_external"] else "extension",
        )
        for row, extra in zip(rows, side)
        if row.get("sender_extension")
    ]
    added = await _upsert_participants(session, ctx.tenant_id, entries, rename=False)
    if added:
        logger.info(f"Tenant {ctx.tenant_id}: added {added} message senders as participants")


# ----------------------------------------------------------------------
# Conversations
# ----------------------------------------------------------------------
async def fetch_conversations(ctx: SyncContext) -> AsyncIterator[SourcePage]:
    """Conversations are small; every cycle reconciles the full set."""
    live = [normalize_live_conversation(row) for row in await ctx.reader.live_conversations()]
    history = [normalize_history_conversation(row) for row in await ctx.reader.history_conversations()]
    history_ids = {row["conversation_id"] for row in history}
    live_only = [row["conversation_id"] for row in live if row["conversation_id"] not in history_ids]
    index = MembershipIndex(await ctx.reader.conversation_members(live_only) if live_only else [])

    result = reconcile(
        live,
        history,
        key_field="conversation_id",
        ts_field="last_message_at",
        enrich_live=index.enrich_conversation,
    )
    ctx.notes.append(
        f"conversations: {result.both} both, {result.live_only} live-only, {result.history_only} history-only"
    )
    records = _record_payload(result)
    for start in range(0, len(records), ctx.batch_size):
        yield SourcePage(records=records[start:start + ctx.batch_size], reconciliation=result)


def conversation_row(record: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    participants = record.get("participants") or []
    return {
        "threecx_conversation_id": record["conversation_id"],
        "conversation_name": record.get("chat_name"),
        "channel_type": channel_for(record.get("provider_type")),
        "is_external": bool(record.get("is_external")),
        "is_group_chat": len(participants) > 2,
        "participant_count": len(participants),
        "message_count": int(record.get("message_count") or 0),
        "first_message_at": _optional_timestamp(record, "first_message_at"),
        "last_message_at": _optional_timestamp(record, "last_message_at"),
        "source_provenance": record["_provenance"],
        "_participants": participants,
        "_is_external": bool(record.get("is_external")),
    }


async def _upsert_participants(
    session: AsyncSession,
    tenant_id: int,
    entries: List[Tuple[int, str, Optional[str], str]],
    rename: bool = True,
) -> int:
    """Add (and with ``rename`` relabel) participants given as (conversation id, number, name, type).

    Returns how many were added.
    """
    if not entries:
        return 0
    conversation_ids = list({conversation_id for conversation_id, _, _, _ in entries})
    result = await session.execute(
        select(Participant).where(Participant.conversation_id.in_(conversation_ids))
    )
    existing = {(p.conversation_id, p.extension_number): p for p in result.scalars()}

    added = 0
    for conversation_id, number, name, participant_type in entries:
        current = existing.get((conversation_id, number))
        if current is None:
            current = Participant(
                conversation_id=conversation_id,
                tenant_id=tenant_id,
                extension_number=number,
                display_name=name,
                participant_type=participant_type,
            )
            session.add(current)
            existing[(conversation_id, number)] = current
            added += 1
        elif rename and name and values_differ(current.display_name, name):
            current.display_name = name
    await session.flush()
    return added


async def store_participants(
    session: AsyncSession,
    ctx: SyncContext,
    rows: List[Dict[str, Any]],
    side: List[Dict[str, Any]],
    objects: Dict[Any, Any],
) -> None:
    entries = []
    for row, extra in zip(rows, side):
        conversation = objects[row["threecx_conversation_id"]]
        participant_type = "external" if extra["_is_external"] else "extension"
        for member in extra["_participants"]:
            entries.append((conversation.id, member["extension"], member.get("name"), participant_type))
    await _upsert_participants(session, ctx.tenant_id, entries)


# ----------------------------------------------------------------------
# Extensions
# ----------------------------------------------------------------------
async def fetch_extensions(ctx: SyncContext) -> AsyncIterator[SourcePage]:
    rows = [dict(row) for row in await ctx.reader.extensions()]
    if rows:
        yield SourcePage(records=rows)


def extension_row(record: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    number = record.get("extension_number")
    if not number:
        raise RecordMappingError(f"extension {record.get('idextension')}: no number")
    first = (record.get("firstname") or "").strip() or None
    last = (record.get("lastname") or "").strip() or None
    display = " ".join(part for part in (first, last) if part) or None
    return {
        "extension_number": str(number),
        "threecx_extension_id": str(record["idextension"]) if record.get("idextension") is not None else None,
        "first_name": first,
        "last_name": last,
        "display_name": display,
    }


async def cascade_extension_names(
    session: AsyncSession,
    ctx: SyncContext,
    rows: List[Dict[str, Any]],
    side: List[Dict[str, Any]],
) -> None:
    """Carry renamed extensions through to stored participant names."""
    existing = await load_existing(
        session, Extension, ctx.tenant_id, "extension_number", [row["extension_number"] for row in rows]
    )
    renamed = 0
    for row in rows:
        current = existing.get(row["extension_number"])
        if current is None or not row["display_name"] or current.display_name == row["display_name"]:
            continue
        result = await session.execute(
            update(Participant)
            .where(
                Participant.tenant_id == ctx.tenant_id,
                Participant.extension_number == row["extension_number"],
            )
            .values(display_name=row["display_name"])
            .execution_options(synchronize_session=False)
        )
        renamed += result.rowcount or 0
    if renamed:
        ctx.notes.append(f"renamed {renamed} participants")


# ----------------------------------------------------------------------
# Call detail records
# ----------------------------------------------------------------------
async def fetch_call_logs(ctx: SyncContext) -> AsyncIterator[SourcePage]:
    async for page in _keyset_pages(ctx, ctx.reader.call_logs, "call_started_at", "call_id"):
        yield page


def _call_direction(record: Dict[str, Any]) -> str:
    source_internal = record.get("source_dn_type") == _DN_TYPE_EXTENSION
    destination_internal = record.get("destination_dn_type") == _DN_TYPE_EXTENSION
    if source_internal and destination_internal:
        return "internal"
    if source_internal:
        return "outbound"
    return "inbound"


def call_log_row(record: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    label = f"call {record.get('call_id')}"
    started = _required_timestamp(record, "call_started_at", label)
    ended = _optional_timestamp(record, "call_ended_at")
    answered = bool(record.get("is_answered"))
    ring = record.get("ring_duration")
    talk = record.get("talk_duration")

    answered_at = None
    if answered and ring is not None:
        answered_at = started + timedelta(seconds=int(ring))

    if record.get("source_dn_type") == _DN_TYPE_EXTENSION:
        extension = record.get("source_dn")
    else:
        extension = record.get("destination_dn")

    return {
        "threecx_call_id": str(record["call_id"]),
        "caller_number": record.get("caller_number"),
        "caller_name": record.get("caller_name"),
        "callee_number": record.get("callee_number"),
        "callee_name": record.get("callee_name"),
        "extension": extension,
        "direction": _call_direction(record),
        "status": "answered" if answered else "missed",
        "ring_duration_seconds": int(ring) if ring is not None else None,
        "talk_duration_seconds": int(talk) if talk is not None else None,
        "total_duration_seconds": int((ended - started).total_seconds()) if ended else None,
        "call_started_at": started,
        "call_answered_at": answered_at,
        "call_ended_at": ended,
        "has_recording": bool(record.get("has_recording")),
    }


# ----------------------------------------------------------------------
# Call recordings
# ----------------------------------------------------------------------
async def fetch_recordings(ctx: SyncContext) -> AsyncIterator[SourcePage]:
    async for page in _keyset_pages(ctx, ctx.reader.recordings, "start_time", "recording_id"):
        yield page


def recording_row(record: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    label = f"recording {record.get('recording_id')}"
    started = _required_timestamp(record, "start_time", label)
    ended = _optional_timestamp(record, "end_time")
    url = (record.get("recording_url") or "").replace("\\", "/")
    filename = posixpath.basename(url) or None
    source_path = None
    if url:
        root = ctx.tenant.recordings_path
        source_path = posixpath.join(root, url.lstrip("/")) if root and not url.startswith(root) else url
    return {
        "threecx_recording_id": str(record["recording_id"]),
        "extension": record.get("extension_number"),
        "caller_number": record.get("caller"),
        "original_filename": filename,
        "recording_started_at": started,
        "recording_ended_at": ended,
        "duration_seconds": int((ended - started).total_seconds()) if ended else None,
        "source_path": source_path,
        "mime_type": _guess_mime(filename),
    }


# ----------------------------------------------------------------------
# File-discovered entities: voicemails, faxes, meetings
# ----------------------------------------------------------------------
def _file_fetcher(root_attr: str, extensions) -> FetchFn:
    async def fetch(ctx: SyncContext) -> AsyncIterator[SourcePage]:
        root = getattr(ctx.tenant, root_attr)
        if not root:
            ctx.notes.append(f"{root_attr} not configured")
            return

        async def fetch_page(cursor: Optional[Cursor], limit: int) -> List[Dict[str, Any]]:
            files = await ctx.reader.remote_files(root, extensions, cursor, limit)
            return [
                {
                    "path": f.path,
                    "relative_path": posixpath.relpath(f.path, root),
                    "name": f.name,
                    "size": f.size,
                    "modified_at": f.modified_at,
                }
                for f in files
            ]

        async for page in _keyset_pages(ctx, fetch_page, "modified_at", "path"):
            yield page

    return fetch


def voicemail_row(record: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    meta = parse_voicemail_path(record["path"])
    return {
        "threecx_voicemail_id": record["relative_path"],
        "extension": meta["extension"],
        "original_filename": record["name"],
        "is_urgent": meta["is_urgent"],
        "received_at": meta["timestamp"] or record["modified_at"],
        "source_path": record["path"],
        "mime_type": _guess_mime(record["name"]),
        "file_size_bytes": record["size"],
    }


def fax_row(record: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    meta = parse_fax_filename(record["name"])
    return {
        "threecx_fax_id": record["relative_path"],
        "direction": meta["direction"],
        "remote_number": meta["remote_number"],
        "original_filename": record["name"],
        "fax_time": meta["timestamp"] or record["modified_at"],
        "source_path": record["path"],
        "mime_type": _guess_mime(record["name"]),
        "file_size_bytes": record["size"],
    }


def meeting_row(record: Dict[str, Any], ctx: SyncContext) -> Dict[str, Any]:
    meta = parse_meeting_filename(record["name"])
    suffix = posixpath.splitext(record["name"])[1].lower()
    return {
        "threecx_meeting_id": meta["meeting_id"] or record["relative_path"],
        "meeting_name": meta["meeting_name"],
        "host_extension": meta["host_extension"],
        "original_filename": record["name"],
        "has_video": suffix in VIDEO_EXTENSIONS,
        "recorded_at": meta["timestamp"] or record["modified_at"],
        "source_path": record["path"],
        "mime_type": _guess_mime(record["name"]),
        "file_size_bytes": record["size"],
    }


# Run order matters: extensions name participants, conversations must exist
# before messages reference them.
STRATEGIES: List[EntityStrategy] = [
    EntityStrategy(
        sync_type=SyncType.EXTENSIONS,
        model=Extension,
        natural_key="extension_number",
        fetch=fetch_extensions,
        to_row=extension_row,
        prepare=cascade_extension_names,
    ),
    EntityStrategy(
        sync_type=SyncType.CONVERSATIONS,
        model=Conversation,
        natural_key="threecx_conversation_id",
        fetch=fetch_conversations,
        to_row=conversation_row,
        backup_flag="backup_chats",
        after_upsert=store_participants,
    ),
    EntityStrategy(
        sync_type=SyncType.MESSAGES,
        model=Message,
        natural_key="threecx_message_id",
        fetch=fetch_messages,
        to_row=message_row,
        backup_flag="backup_chats",
        prepare=resolve_conversations,
        after_upsert=store_senders,
    ),
    EntityStrategy(
        sync_type=SyncType.CDR,
        model=CallLog,
        natural_key="threecx_call_id",
        fetch=fetch_call_logs,
        to_row=call_log_row,
        backup_flag="backup_cdr",
    ),
    EntityStrategy(
        sync_type=SyncType.RECORDINGS,
        model=CallRecording,
        natural_key="threecx_recording_id",
        fetch=fetch_recordings,
        to_row=recording_row,
        backup_flag="backup_recordings",
        file_category="recordings",
    ),
    EntityStrategy(
        sync_type=SyncType.VOICEMAILS,
        model=Voicemail,
        natural_key="threecx_voicemail_id",
        fetch=_file_fetcher("voicemail_path", AUDIO_EXTENSIONS),
        to_row=voicemail_row,
        backup_flag="backup_voicemails",
        file_category="voicemails",
    ),
    EntityStrategy(
        sync_type=SyncType.FAXES,
        model=Fax,
        natural_key="threecx_fax_id",
        fetch=_file_fetcher("fax_path", FAX_EXTENSIONS),
        to_row=fax_row,
        backup_flag="backup_faxes",
        file_category="faxes",
    ),
    EntityStrategy(
        sync_type=SyncType.MEETINGS,
        model=MeetingRecording,
        natural_key="threecx_meeting_id",
        fetch=_file_fetcher("meetings_path", MEETING_EXTENSIONS),
        to_row=meeting_row,
        backup_flag="backup_meetings",
        file_category="meetings",
    ),
]

STRATEGIES_BY_TYPE: Dict[SyncType, EntityStrategy] = {s.sync_type: s for s in STRATEGIES}

# Strategies that need the SFTP channel to list their sources
FILE_DISCOVERED = {SyncType.VOICEMAILS, SyncType.FAXES, SyncType.MEETINGS}


def enabled_sync_types(tenant: Tenant, skip=()) -> List[str]:
    """Sync types that run for ``tenant``, in run order."""
    skipped = set(skip)
    types = [s.name for s in STRATEGIES if s.enabled_for(tenant) and s.name not in skipped]
    if tenant.backup_chat_media and SyncType.MEDIA.value not in skipped:
        types.append(SyncType.MEDIA.value)
    return types
