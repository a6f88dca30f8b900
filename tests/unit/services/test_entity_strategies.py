# tests/unit/services/test_entity_strategies.py
import pytest
from datetime import datetime, timezone, timedelta
from types import SimpleNamespace

from sqlalchemy import select

from backupwiz.core.exceptions import RecordMappingError
from backupwiz.models.conversation import Conversation, Participant
from backupwiz.models.extension import Extension
from backupwiz.services.entity_strategies import (
    STRATEGIES,
    SyncContext,
    call_log_row,
    cascade_extension_names,
    conversation_row,
    enabled_sync_types,
    extension_row,
    fax_row,
    meeting_row,
    message_row,
    recording_row,
    resolve_conversations,
    split_side_data,
    store_senders,
    voicemail_row,
)

T0 = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def ctx(settings):
    tenant = SimpleNamespace(id=1, recordings_path="/var/lib/3cxpbx/Instance1/Data/Recordings")
    return SyncContext(tenant=tenant, reader=None, session_factory=None, settings=settings)


@pytest.fixture
def db_ctx(settings, tenant, session_factory):
    return SyncContext(tenant=tenant, reader=None, session_factory=session_factory, settings=settings)


"""
1. Row mapping
"""

def test_call_log_row_outbound_answered(ctx):
    row = call_log_row({
        "call_id": 42,
        "call_started_at": T0,
        "call_ended_at": T0 + timedelta(seconds=95),
        "is_answered": True,
        "ring_duration": 7,
        "talk_duration": 88,
        "source_dn_type": 0,
        "destination_dn_type": 1,
        "source_dn": "100",
        "destination_dn": "10000",
        "caller_number": "100",
        "callee_number": "+15550100",
    }, ctx)

    assert row["threecx_call_id"] == "42"
    assert row["direction"] == "outbound"
    assert row["status"] == "answered"
    assert row["extension"] == "100"
    assert row["call_answered_at"] == T0 + timedelta(seconds=7)
    assert row["total_duration_seconds"] == 95


def test_call_log_row_inbound_missed(ctx):
    row = call_log_row({
        "call_id": "7",
        "call_started_at": T0.isoformat(),
        "is_answered": False,
        "source_dn_type": 1,
        "destination_dn_type": 0,
        "destination_dn": "101",
    }, ctx)

    assert row["direction"] == "inbound"
    assert row["status"] == "missed"
    assert row["extension"] == "101"
    assert row["call_answered_at"] is None
    assert row["call_ended_at"] is None


def test_call_log_row_internal(ctx):
    row = call_log_row({"call_id": 1, "call_started_at": T0, "source_dn_type": 0, "destination_dn_type": 0}, ctx)
    assert row["direction"] == "internal"


def test_call_log_row_requires_start_time(ctx):
    with pytest.raises(RecordMappingError):
        call_log_row({"call_id": 1, "call_started_at": None}, ctx)
    with pytest.raises(RecordMappingError):
        call_log_row({"call_id": 1, "call_started_at": "yesterday"}, ctx)


def test_message_row_classifies_media_and_keeps_conversation_key(ctx):
    row = message_row({
        "message_id": "m1",
        "conversation_id": "c9",
        "time_sent": T0,
        "message": "[image]",
        "sender_extension": "100",
        "sender_name": "Alice",
        "is_external": False,
        "_provenance": "both",
    }, ctx)

    assert row["has_media"] is True
    assert row["message_type"] == "image"
    assert row["sender_type"] == "extension"
    side = split_side_data(row)
    assert side == {"_conversation_key": "c9", "_is_external": False}
    assert "_conversation_key" not in row


def test_message_row_without_conversation_is_rejected(ctx):
    with pytest.raises(RecordMappingError):
        message_row({"message_id": "m1", "conversation_id": None, "time_sent": T0, "_provenance": "live"}, ctx)


def test_conversation_row_group_detection(ctx):
    row = conversation_row({
        "conversation_id": "c1",
        "chat_name": "Ops",
        "is_external": True,
        "provider_type": "WhatsApp",
        "message_count": 12,
        "participants": [
            {"extension": "100", "name": "Alice"},
            {"extension": "101", "name": "Bob"},
            {"extension": "102", "name": "Carol"},
        ],
        "_provenance": "history",
    }, ctx)

    assert row["is_group_chat"] is True
    assert row["participant_count"] == 3
    assert row["channel_type"] == "whatsapp"
    assert row["is_external"] is True


def test_extension_row_builds_display_name(ctx):
    row = extension_row({"idextension": 3, "extension_number": 105, "firstname": " Ada ", "lastname": ""}, ctx)
    assert row["extension_number"] == "105"
    assert row["display_name"] == "Ada"
    assert row["last_name"] is None

    with pytest.raises(RecordMappingError):
        extension_row({"idextension": 4, "extension_number": None}, ctx)


def test_recording_row_joins_recordings_root(ctx):
    row = recording_row({
        "recording_id": 5,
        "recording_url": "100\\[Alice]_100-200_20250301090000(1).wav",
        "start_time": T0,
        "end_time": T0 + timedelta(seconds=30),
        "extension_number": "100",
    }, ctx)

    assert row["source_path"] == f"{ctx.tenant.recordings_path}/100/[Alice]_100-200_20250301090000(1).wav"
    assert row["original_filename"] == "[Alice]_100-200_20250301090000(1).wav"
    assert row["duration_seconds"] == 30
    assert row["mime_type"] in ("audio/x-wav", "audio/wav")


def file_record(path, root, modified_at=T0):
    return {
        "path": path,
        "relative_path": path[len(root) + 1:],
        "name": path.rsplit("/", 1)[-1],
        "size": 2048,
        "modified_at": modified_at,
    }


def test_voicemail_row_reads_extension_and_time_from_path(ctx):
    root = "/var/lib/3cxpbx/Instance1/Data/Voicemail"
    row = voicemail_row(file_record(f"{root}/Data/100/vm_20250301_083000_urgent.wav", root), ctx)

    assert row["threecx_voicemail_id"] == "Data/100/vm_20250301_083000_urgent.wav"
    assert row["extension"] == "100"
    assert row["is_urgent"] is True
    assert row["received_at"] == datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)
    assert row["file_size_bytes"] == 2048


def test_fax_row_falls_back_to_file_time(ctx):
    root = "/var/lib/3cxpbx/Instance1/Data/Fax"
    row = fax_row(file_record(f"{root}/recv_+15551234567.pdf", root), ctx)

    assert row["direction"] == "inbound"
    assert row["remote_number"] == "+15551234567"
    assert row["fax_time"] == T0


def test_meeting_row_detects_video(ctx):
    root = "/meetings"
    row = meeting_row(file_record(f"{root}/Conference_ext100_20250301_090000.mp4", root), ctx)

    assert row["host_extension"] == "100"
    assert row["has_video"] is True
    assert row["threecx_meeting_id"] == "Conference_ext100_20250301_090000.mp4"
    assert row["recorded_at"] == T0


"""
2. Hooks
"""

@pytest.mark.asyncio
async def test_resolve_conversations_creates_stubs(db_session, db_ctx):
    existing = Conversation(tenant_id=db_ctx.tenant_id, threecx_conversation_id="c1")
    db_session.add(existing)
    await db_session.flush()

    rows = [{"threecx_message_id": "m1"}, {"threecx_message_id": "m2"}]
    side = [{"_conversation_key": "c1"}, {"_conversation_key": "c2"}]
    await resolve_conversations(db_session, db_ctx, rows, side)

    assert rows[0]["conversation_id"] == existing.id
    stub = await db_session.scalar(
        select(Conversation).where(Conversation.threecx_conversation_id == "c2")
    )
    assert rows[1]["conversation_id"] == stub.id
    assert stub.message_count == 0


@pytest.mark.asyncio
async def test_renamed_extension_updates_participants(db_session, db_ctx):
    conversation = Conversation(tenant_id=db_ctx.tenant_id, threecx_conversation_id="c1")
    db_session.add(conversation)
    await db_session.flush()
    db_session.add(Extension(tenant_id=db_ctx.tenant_id, extension_number="100", display_name="Alice Smith"))
    db_session.add(Participant(
        tenant_id=db_ctx.tenant_id,
        conversation_id=conversation.id,
        extension_number="100",
        display_name="Alice Smith",
    ))
    await db_session.flush()

    rows = [{"extension_number": "100", "display_name": "Alice Jones"}]
    await cascade_extension_names(db_session, db_ctx, rows, [{}])

    participant = (await db_session.execute(
        select(Participant.display_name).where(Participant.extension_number == "100")
    )).scalar_one()
    assert participant == "Alice Jones"
    assert db_ctx.notes == ["renamed 1 participants"]


@pytest.mark.asyncio
async def test_store_senders_adds_missing_senders_only(db_session, db_ctx):
    conversation = Conversation(tenant_id=db_ctx.tenant_id, threecx_conversation_id="c1")
    db_session.add(conversation)
    await db_session.flush()
    db_session.add(Participant(
        tenant_id=db_ctx.tenant_id,
        conversation_id=conversation.id,
        extension_number="100",
        display_name="Alice Smith",
    ))
    await db_session.flush()

    rows = [
        {"conversation_id": conversation.id, "sender_extension": "100", "sender_name": "Alice"},
        {"conversation_id": conversation.id, "sender_extension": "+15551234567", "sender_name": "Carol"},
        {"conversation_id": conversation.id, "sender_extension": "+15551234567", "sender_name": "Carol"},
        {"conversation_id": conversation.id, "sender_extension": None, "sender_name": None},
    ]
    side = [
        {"_is_external": False},
        {"_is_external": True},
        {"_is_external": True},
        {"_is_external": False},
    ]
    await store_senders(db_session, db_ctx, rows, side, {})

    participants = {
        p.extension_number: p
        for p in (await db_session.execute(
            select(Participant).where(Participant.conversation_id == conversation.id)
        )).scalars()
    }
    assert set(participants) == {"100", "+15551234567"}
    assert participants["100"].display_name == "Alice Smith"
    assert participants["+15551234567"].display_name == "Carol"
    assert participants["+15551234567"].participant_type == "external"


"""
3. Registry
"""

def test_strategy_order_puts_conversations_before_messages():
    names = [s.name for s in STRATEGIES]
    assert names.index("extensions") < names.index("conversations") < names.index("messages")


def test_enabled_sync_types_follow_backup_flags():
    tenant = SimpleNamespace(
        backup_chats=False, backup_chat_media=True, backup_recordings=True, backup_voicemails=False,
        backup_faxes=True, backup_meetings=False, backup_cdr=True,
    )
    assert enabled_sync_types(tenant) == ["extensions", "cdr", "recordings", "faxes", "media"]
    assert enabled_sync_types(tenant, skip=["media", "cdr"]) == ["extensions", "recordings", "faxes"]
