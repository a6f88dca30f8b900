# tests/unit/services/test_sync_service.py
import asyncio
import pytest
from contextlib import asynccontextmanager
from datetime import datetime, timezone, timedelta
from unittest.mock import MagicMock

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from backupwiz.core.enums import SyncLogStatus, SyncState
from backupwiz.core.exceptions import SourceDatabaseUnavailableError, SourceQueryError, TunnelUnavailableError
from backupwiz.core.utils import ensure_utc
from backupwiz.models.call_log import CallLog
from backupwiz.models.conversation import Conversation, Participant
from backupwiz.models.extension import Extension
from backupwiz.models.message import Message
from backupwiz.models.sync_log import SyncLog
from backupwiz.models.sync_status import SyncStatus
from backupwiz.models.tenant import Tenant
from backupwiz.services.sync_service import SyncService
from backupwiz.services.upsert import upsert_rows
from backupwiz.storage.object_store import LocalObjectStore
from backupwiz.threecx.connection import SourceSession

T0 = datetime(2025, 3, 1, 10, 0, tzinfo=timezone.utc)


def at(minutes):
    return T0 + timedelta(minutes=minutes)


def page(rows, ts_field, key_field, cursor, limit):
    """Keyset paging the way the source queries do it."""
    ordered = sorted(rows, key=lambda r: (r[ts_field], str(r[key_field])))
    if cursor is not None and cursor.ts is not None:
        if cursor.key is None:
            ordered = [r for r in ordered if r[ts_field] >= cursor.ts]
        else:
            ordered = [r for r in ordered if (r[ts_field], str(r[key_field])) > (cursor.ts, cursor.key)]
    return [dict(r) for r in ordered[:limit]]


class FakeReader:
    """In-memory stand-in for ThreeCXReader."""

    def __init__(self):
        self.files = None
        self.live = [
            self.live_row("m1", 0, "p1"),
            self.live_row("m2", 1, "p2"),
            self.live_row("m4", 3, "p1"),
        ]
        self.history = [
            self.history_row("m1", 0, "100", "Alice"),
            self.history_row("m3", 2, "101", "Bob"),
            self.history_row("m4", 3, "100", "Alice"),
        ]
        self.members = [
            {"conversation_id": "c1", "party": "p1", "extension_number": "100", "display_name": "Alice"},
            {"conversation_id": "c1", "party": "p2", "extension_number": "101", "display_name": "Bob"},
        ]
        self.live_conversation_rows = [{
            "conversation_id": "c1",
            "chat_name": "Sales",
            "is_external": False,
            "queue_number": None,
            "message_count": 3,
            "first_message_at": at(0),
            "last_message_at": at(3),
        }]
        self.history_conversation_rows = [{
            "conversation_id": "c1",
            "chat_name": "Sales team",
            "is_external": False,
            "message_count": 4,
            "first_message_at": at(0),
            "last_message_at": at(3),
            "provider_type": None,
            "participants_grp_array": "100:Alice,101:Bob",
        }]
        self.extension_rows = [
            {"idextension": 1, "extension_number": "100", "firstname": "Alice", "lastname": "Smith"},
            {"idextension": 2, "extension_number": "101", "firstname": "Bob", "lastname": None},
        ]
        self.call_rows = [self.call_row(1, 0), self.call_row(2, 5), self.call_row(3, 9)]
        self.extension_error = None

    @staticmethod
    def live_row(message_id, minutes, party):
        return {
            "message_id": message_id,
            "conversation_id": "c1",
            "sender_party": party,
            "message": f"text {message_id}",
            "time_sent": at(minutes),
            "internal_file_name": None,
            "public_file_name": None,
            "is_external": False,
            "queue_number": None,
        }

    @staticmethod
    def history_row(message_id, minutes, number, name):
        return {
            "message_id": message_id,
            "conversation_id": "c1",
            "is_external": False,
            "queue_number": None,
            "sender_participant_name": name,
            "sender_participant_no": number,
            "sender_participant_phone": None,
            "time_sent": at(minutes),
            "message": f"text {message_id}",
        }

    @staticmethod
    def call_row(call_id, minutes):
        return {
            "call_id": call_id,
            "call_started_at": at(minutes),
            "call_ended_at": at(minutes) + timedelta(seconds=65),
            "is_answered": True,
            "ring_duration": 5,
            "talk_duration": 60,
            "source_dn_type": 0,
            "destination_dn_type": 1,
            "source_dn": "100",
            "destination_dn": "10000",
            "caller_number": "100",
            "caller_name": "Alice Smith",
            "callee_number": "+15550100",
            "callee_name": None,
            "has_recording": False,
        }

    async def live_messages(self, cursor, limit):
        return page(self.live, "time_sent", "message_id", cursor, limit)

    async def history_messages(self, cursor, limit):
        return page(self.history, "time_sent", "message_id", cursor, limit)

    async def live_messages_by_id(self, ids):
        return [dict(r) for r in self.live if r["message_id"] in ids]

    async def history_messages_by_id(self, ids):
        return [dict(r) for r in self.history if r["message_id"] in ids]

    async def live_message_ids(self):
        return {r["message_id"] for r in self.live}

    async def history_message_ids(self):
        return {r["message_id"] for r in self.history}

    async def live_conversations(self):
        return [dict(r) for r in self.live_conversation_rows]

    async def history_conversations(self):
        return [dict(r) for r in self.history_conversation_rows]

    async def conversation_members(self, conversation_ids):
        wanted = {str(c) for c in conversation_ids}
        return [dict(m) for m in self.members if m["conversation_id"] in wanted]

    async def extensions(self):
        if self.extension_error is not None:
            raise self.extension_error
        return [dict(r) for r in self.extension_rows]

    async def call_logs(self, cursor, limit):
        return page(self.call_rows, "call_started_at", "call_id", cursor, limit)

    async def file_mappings(self):
        return []


@pytest.fixture
def reader():
    return FakeReader()


@pytest.fixture
def opened():
    return []


@pytest.fixture
def source_opener(opened):
    def _open(tenant, settings):
        @asynccontextmanager
        async def _session():
            opened.append(tenant.slug)
            yield SourceSession(tunnel=MagicMock(), db=MagicMock())
        return _session()
    return _open


@pytest.fixture
def service(session_factory, settings, source_opener, reader, mocker, tmp_path):
    mocker.patch("backupwiz.services.sync_service.ThreeCXReader", return_value=reader)
    return SyncService(
        session_factory,
        settings,
        object_store=LocalObjectStore(str(tmp_path)),
        source_opener=source_opener,
    )


async def count(session_factory, model, **filters):
    async with session_factory() as session:
        query = select(func.count(model.id))
        for name, value in filters.items():
            query = query.where(getattr(model, name) == value)
        return await session.scalar(query)


async def status_of(session_factory, tenant_id, sync_type):
    async with session_factory() as session:
        return await session.scalar(
            select(SyncStatus).where(SyncStatus.tenant_id == tenant_id, SyncStatus.sync_type == sync_type)
        )


"""
1. A full tenant cycle
"""

@pytest.mark.asyncio
async def test_sync_tenant_backs_up_every_enabled_type(service, session_factory, tenant, opened):
    result = await service.sync_tenant(tenant)

    assert opened == ["acme"]
    assert result.status is SyncLogStatus.SUCCESS
    assert [e.sync_type for e in result.entities] == ["extensions", "conversations", "messages", "cdr"]
    assert all(e.status == "success" for e in result.entities)

    assert await count(session_factory, Extension, tenant_id=tenant.id) == 2
    assert await count(session_factory, Conversation, tenant_id=tenant.id) == 1
    assert await count(session_factory, Participant, tenant_id=tenant.id) == 2
    assert await count(session_factory, Message, tenant_id=tenant.id) == 4
    assert await count(session_factory, CallLog, tenant_id=tenant.id) == 3

    async with session_factory() as session:
        log = await session.scalar(select(SyncLog))
        tenant_row = await session.get(Tenant, tenant.id)
    assert log.status == SyncLogStatus.SUCCESS.value
    assert log.completed_at is not None
    assert log.items_synced == result.items_synced
    assert tenant_row.last_sync_at is not None


@pytest.mark.asyncio
async def test_messages_are_reconciled_across_live_and_history(service, session_factory, tenant):
    await service.sync_tenant(tenant)

    async with session_factory() as session:
        messages = {
            m.threecx_message_id: m
            for m in (await session.execute(select(Message))).scalars()
        }
        conversation = await session.scalar(select(Conversation))

    assert {k: m.source_provenance for k, m in messages.items()} == {
        "m1": "both", "m2": "live", "m3": "history", "m4": "both",
    }
    # History supplies the sender for shared rows; membership fills in live-only rows
    assert messages["m1"].sender_name == "Alice"
    assert messages["m2"].sender_extension == "101"
    assert messages["m2"].sender_name == "Bob"
    assert all(m.conversation_id == conversation.id for m in messages.values())
    assert conversation.conversation_name == "Sales team"
    assert conversation.message_count == 4


@pytest.mark.asyncio
async def test_watermarks_follow_the_newest_synced_record(service, session_factory, tenant):
    await service.sync_tenant(tenant)

    messages = await status_of(session_factory, tenant.id, "messages")
    cdr = await status_of(session_factory, tenant.id, "cdr")
    assert ensure_utc(messages.last_synced_timestamp) == at(3)
    assert ensure_utc(cdr.last_synced_timestamp) == at(9)
    assert messages.status == SyncState.IDLE.value
    assert messages.last_full_reconcile_at is not None


@pytest.mark.asyncio
async def test_second_cycle_is_idempotent(service, session_factory, tenant):
    await service.sync_tenant(tenant)
    second = await service.sync_tenant(tenant)

    by_type = {e.sync_type: e for e in second.entities}
    assert by_type["messages"].counts.inserted == 0
    assert by_type["messages"].counts.updated == 0
    assert by_type["cdr"].counts.inserted == 0
    assert await count(session_factory, Message, tenant_id=tenant.id) == 4
    assert await count(session_factory, CallLog, tenant_id=tenant.id) == 3

    messages = await status_of(session_factory, tenant.id, "messages")
    assert ensure_utc(messages.last_synced_timestamp) == at(3)


@pytest.mark.asyncio
async def test_new_records_after_watermark_are_picked_up(service, session_factory, tenant, reader):
    await service.sync_tenant(tenant)
    reader.live.append(reader.live_row("m5", 10, "p1"))
    reader.history.append(reader.history_row("m5", 10, "100", "Alice"))
    reader.call_rows.append(reader.call_row(4, 12))

    second = await service.sync_tenant(tenant)

    by_type = {e.sync_type: e for e in second.entities}
    assert by_type["messages"].counts.inserted == 1
    assert by_type["cdr"].counts.inserted == 1
    assert ensure_utc((await status_of(session_factory, tenant.id, "messages")).last_synced_timestamp) == at(10)


@pytest.mark.asyncio
async def test_full_check_backfills_messages_behind_the_watermark(service, session_factory, tenant, reader):
    await service.sync_tenant(tenant)
    # A history row appears with a timestamp older than the watermark
    reader.history.append(reader.history_row("m0", -30, "101", "Bob"))

    await service.sync_tenant(tenant)
    assert await count(session_factory, Message, threecx_message_id="m0") == 0

    result = await service.sync_tenant(tenant, full_reconcile=True)
    messages = next(e for e in result.entities if e.sync_type == "messages")
    assert await count(session_factory, Message, threecx_message_id="m0") == 1
    assert any("1 missing" in note for note in messages.notes)


@pytest.mark.asyncio
async def test_full_check_applies_history_to_rows_first_seen_live(service, session_factory, tenant, reader):
    await service.sync_tenant(tenant)
    async with session_factory() as session:
        m2 = await session.scalar(select(Message).where(Message.threecx_message_id == "m2"))
    assert (m2.source_provenance, m2.sender_name) == ("live", "Bob")

    # The history view catches up behind the watermark
    reader.history.append(reader.history_row("m2", 1, "101", "Robert (history)"))
    result = await service.sync_tenant(tenant, full_reconcile=True)

    messages = next(e for e in result.entities if e.sync_type == "messages")
    assert messages.counts.updated == 1
    assert any("1 re-reconciled" in note for note in messages.notes)
    async with session_factory() as session:
        m2 = await session.scalar(select(Message).where(Message.threecx_message_id == "m2"))
    assert m2.source_provenance == "both"
    assert m2.sender_name == "Robert (history)"
    assert m2.sender_extension == "101"


@pytest.mark.asyncio
async def test_empty_live_conversation_is_backed_up(service, session_factory, tenant, reader):
    reader.live_conversation_rows.append({
        "conversation_id": "c9",
        "chat_name": "Quiet room",
        "is_external": False,
        "queue_number": None,
        "message_count": 0,
        "first_message_at": None,
        "last_message_at": None,
    })

    await service.sync_tenant(tenant)

    async with session_factory() as session:
        c9 = await session.scalar(
            select(Conversation).where(Conversation.threecx_conversation_id == "c9")
        )
    assert c9 is not None
    assert (c9.message_count, c9.source_provenance) == (0, "live")
    assert c9.conversation_name == "Quiet room"


@pytest.mark.asyncio
async def test_message_sender_missing_from_array_joins_conversation(service, session_factory, tenant, reader):
    reader.history.append(reader.history_row("m5", 4, "102", "Dave"))

    await service.sync_tenant(tenant)

    async with session_factory() as session:
        numbers = set(await session.scalars(select(Participant.extension_number)))
    assert numbers == {"100", "101", "102"}


"""
2. Failure handling
"""

@pytest.mark.asyncio
async def test_unmappable_record_is_counted_not_fatal(service, session_factory, tenant, reader):
    broken = reader.call_row(9, 1)
    broken["call_started_at"] = "not a date"
    original = reader.call_logs

    async def call_logs_with_broken_row(cursor, limit):
        rows = await original(cursor, limit)
        if cursor is None or cursor.key is None:
            rows = [dict(broken)] + rows
        return rows

    reader.call_logs = call_logs_with_broken_row

    result = await service.sync_tenant(tenant)

    cdr = next(e for e in result.entities if e.sync_type == "cdr")
    assert cdr.status == "success"
    assert cdr.items_failed == 1
    assert await count(session_factory, CallLog, tenant_id=tenant.id) == 3


@pytest.mark.asyncio
async def test_write_failure_on_later_page_keeps_earlier_watermark(service, session_factory, settings, tenant,
                                                                   mocker):
    settings.SYNC_BATCH_SIZE = 2

    async def failing_upsert(session, model, tenant_id, key_attr, rows):
        if model is CallLog and any(row["threecx_call_id"] == "3" for row in rows):
            raise IntegrityError("INSERT INTO call_logs", {}, Exception("disk full"))
        return await upsert_rows(session, model, tenant_id, key_attr, rows)

    mocker.patch("backupwiz.services.sync_service.upsert_rows", side_effect=failing_upsert)

    result = await service.sync_tenant(tenant)

    cdr = next(e for e in result.entities if e.sync_type == "cdr")
    assert cdr.status == "error"
    assert cdr.error.code == "DESTINATION_WRITE_ERROR"
    assert cdr.counts.inserted == 2

    row = await status_of(session_factory, tenant.id, "cdr")
    assert row.status == SyncState.ERROR.value
    assert row.last_error.startswith("DESTINATION_WRITE_ERROR")
    assert "disk full" in row.last_error
    assert ensure_utc(row.last_synced_timestamp) == at(5)
    assert await count(session_factory, CallLog, tenant_id=tenant.id) == 2


@pytest.mark.asyncio
async def test_failing_type_does_not_stop_the_others(service, session_factory, tenant, reader):
    reader.extension_error = SourceQueryError("relation \"extension\" does not exist")

    result = await service.sync_tenant(tenant)

    by_type = {e.sync_type: e for e in result.entities}
    assert by_type["extensions"].status == "error"
    assert by_type["messages"].status == "success"
    assert result.status is SyncLogStatus.PARTIAL

    extensions = await status_of(session_factory, tenant.id, "extensions")
    assert extensions.status == SyncState.ERROR.value
    assert extensions.consecutive_failures == 1
    assert "SOURCE_QUERY_ERROR" in extensions.last_error


@pytest.mark.asyncio
async def test_lost_source_database_ends_the_tenant_cycle(service, session_factory, tenant, reader):
    reader.extension_error = SourceDatabaseUnavailableError("connection reset")

    result = await service.sync_tenant(tenant)

    assert [e.sync_type for e in result.entities] == ["extensions"]
    assert result.status is SyncLogStatus.ERROR
    for sync_type in ("extensions", "conversations", "messages", "cdr"):
        row = await status_of(session_factory, tenant.id, sync_type)
        assert row.status == SyncState.ERROR.value, sync_type
    assert await count(session_factory, Message) == 0


@pytest.mark.asyncio
async def test_unreachable_tunnel_marks_every_type_failed(session_factory, settings, tenant, mocker, tmp_path):
    def opener(tenant, settings):
        @asynccontextmanager
        async def _session():
            raise TunnelUnavailableError("SSH authentication failed for backup@pbx.acme.example.com:22")
            yield
        return _session()

    service = SyncService(session_factory, settings, object_store=LocalObjectStore(str(tmp_path)),
                          source_opener=opener)
    result = await service.sync_tenant(tenant)

    assert result.status is SyncLogStatus.ERROR
    assert result.error.code == "TUNNEL_UNAVAILABLE"
    for sync_type in ("extensions", "conversations", "messages", "cdr"):
        row = await status_of(session_factory, tenant.id, sync_type)
        assert row.status == SyncState.ERROR.value
        assert row.last_error.startswith("TUNNEL_UNAVAILABLE")

    async with session_factory() as session:
        log = await session.scalar(select(SyncLog))
    assert log.status == SyncLogStatus.ERROR.value
    assert log.error_count == 1


@pytest.mark.asyncio
async def test_type_already_running_is_skipped(service, session_factory, tenant):
    await service.status.try_begin(tenant.id, "cdr")

    result = await service.sync_tenant(tenant)

    cdr = next(e for e in result.entities if e.sync_type == "cdr")
    assert cdr.status == "skipped"
    assert await count(session_factory, CallLog) == 0
    assert await count(session_factory, Message) == 4


@pytest.mark.asyncio
async def test_cycle_timeout_is_recorded(service, session_factory, settings, tenant, reader):
    settings.SYNC_CYCLE_TIMEOUT_SECONDS = 0.5

    async def slow_extensions():
        await asyncio.sleep(10)
        return []

    reader.extensions = slow_extensions

    result = await service.sync_tenant(tenant)

    extensions = next(e for e in result.entities if e.sync_type == "extensions")
    assert extensions.status == "error"
    assert extensions.error.code == "CYCLE_TIMEOUT"
    row = await status_of(session_factory, tenant.id, "extensions")
    assert row.status == SyncState.ERROR.value


"""
3. Multiple tenants
"""

@pytest.mark.asyncio
async def test_run_all_isolates_tenant_failures(session_factory, settings, tenant, other_tenant, reader, mocker,
                                                tmp_path):
    mocker.patch("backupwiz.services.sync_service.ThreeCXReader", return_value=reader)

    def opener(t, s):
        @asynccontextmanager
        async def _session():
            if t.slug == "globex":
                raise TunnelUnavailableError("connection refused")
            yield SourceSession(tunnel=MagicMock(), db=MagicMock())
        return _session()

    service = SyncService(session_factory, settings, object_store=LocalObjectStore(str(tmp_path)),
                          source_opener=opener)
    report = await service.run_all()

    by_slug = {r.tenant_slug: r for r in report.results}
    assert by_slug["acme"].status is SyncLogStatus.SUCCESS
    assert by_slug["globex"].status is SyncLogStatus.ERROR
    assert report.success_count == 1
    assert report.failure_count == 1
    assert await count(session_factory, Message, tenant_id=tenant.id) == 4
    assert await count(session_factory, Message, tenant_id=other_tenant.id) == 0


@pytest.mark.asyncio
async def test_run_all_respects_slug_filter_and_inactive_tenants(service, make_tenant, opened):
    await make_tenant("acme")
    await make_tenant("dormant", is_active=False)
    await make_tenant("paused", sync_enabled=False)

    await service.run_all()
    assert opened == ["acme"]

    opened.clear()
    await service.run_all(["acme", "dormant"])
    assert opened == ["acme"]


@pytest.mark.asyncio
async def test_skip_and_disabled_flags_limit_the_plan(service, make_tenant):
    tenant = await make_tenant("acme", backup_cdr=False, backup_chat_media=True)

    assert service.plan_for(tenant) == ["extensions", "conversations", "messages", "media"]
    assert service.plan_for(tenant, skip=["messages", "media"]) == ["extensions", "conversations"]


@pytest.mark.asyncio
async def test_tenant_with_nothing_enabled_does_not_connect(service, make_tenant, opened):
    tenant = await make_tenant("quiet", backup_chats=False, backup_cdr=False)

    result = await service.sync_tenant(tenant, skip=["extensions"])

    assert result.entities == []
    assert opened == []
