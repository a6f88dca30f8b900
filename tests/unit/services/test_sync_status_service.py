# tests/unit/services/test_sync_status_service.py
import pytest
from datetime import datetime, timezone, timedelta

from backupwiz.core.enums import SyncState
from backupwiz.core.utils import ensure_utc
from backupwiz.services.sync_status_service import MAX_ERROR_LENGTH, SyncStatusService

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    state = {"now": NOW}

    def _clock():
        return state["now"]

    _clock.state = state
    return _clock


@pytest.fixture
def service(session_factory, settings, clock):
    return SyncStatusService(session_factory, settings, clock=clock)


"""
1. Single-run guard
"""

@pytest.mark.asyncio
async def test_try_begin_creates_row_and_blocks_second_claim(service, tenant):
    assert await service.try_begin(tenant.id, "messages") is True
    assert await service.try_begin(tenant.id, "messages") is False

    row = await service.get(tenant.id, "messages")
    assert row.status == SyncState.RUNNING.value
    assert ensure_utc(row.last_sync_at) == NOW


@pytest.mark.asyncio
async def test_try_begin_is_per_type_and_per_tenant(service, tenant, other_tenant):
    assert await service.try_begin(tenant.id, "messages") is True
    assert await service.try_begin(tenant.id, "cdr") is True
    assert await service.try_begin(other_tenant.id, "messages") is True


@pytest.mark.asyncio
async def test_stale_running_lease_can_be_taken_over(service, tenant, settings, clock):
    assert await service.try_begin(tenant.id, "messages") is True

    clock.state["now"] = NOW + timedelta(minutes=settings.SYNC_RUNNING_LEASE_MINUTES + 1)
    assert await service.try_begin(tenant.id, "messages") is True


@pytest.mark.asyncio
async def test_finished_cycle_releases_guard(service, tenant):
    await service.try_begin(tenant.id, "cdr")
    await service.mark_success(tenant.id, "cdr", items_synced=3)
    assert await service.try_begin(tenant.id, "cdr") is True


"""
2. Watermark
"""

@pytest.mark.asyncio
async def test_watermark_only_moves_forward(service, session_factory, tenant):
    await service.try_begin(tenant.id, "messages")
    later = NOW - timedelta(minutes=1)
    earlier = NOW - timedelta(minutes=30)

    async with session_factory() as session:
        await service.advance_watermark(session, tenant.id, "messages", later)
        await session.commit()
    async with session_factory() as session:
        await service.advance_watermark(session, tenant.id, "messages", earlier)
        await service.advance_watermark(session, tenant.id, "messages", None)
        await session.commit()

    row = await service.get(tenant.id, "messages")
    assert ensure_utc(row.last_synced_timestamp) == later


@pytest.mark.asyncio
async def test_watermark_rolls_back_with_the_batch(service, session_factory, tenant):
    await service.try_begin(tenant.id, "messages")
    async with session_factory() as session:
        await service.advance_watermark(session, tenant.id, "messages", NOW)
        await session.rollback()

    row = await service.get(tenant.id, "messages")
    assert row.last_synced_timestamp is None


"""
3. Outcomes
"""

@pytest.mark.asyncio
async def test_mark_success_resets_failures(service, tenant):
    await service.try_begin(tenant.id, "messages")
    await service.mark_error(tenant.id, "messages", "boom")
    await service.try_begin(tenant.id, "messages")
    await service.mark_success(tenant.id, "messages", items_synced=5, items_failed=1, notes="ok",
                               full_reconcile_at=NOW)

    row = await service.get(tenant.id, "messages")
    assert row.status == SyncState.IDLE.value
    assert row.consecutive_failures == 0
    assert row.total_failures == 1
    assert row.last_error is None
    assert row.items_synced == 5
    assert row.items_failed == 1
    assert row.notes == "ok"
    assert ensure_utc(row.last_success_at) == NOW
    assert ensure_utc(row.last_full_reconcile_at) == NOW


@pytest.mark.asyncio
async def test_mark_error_counts_and_truncates(service, tenant):
    await service.try_begin(tenant.id, "cdr")
    await service.mark_error(tenant.id, "cdr", "x" * (MAX_ERROR_LENGTH + 50))
    await service.mark_error(tenant.id, "cdr", "again")

    row = await service.get(tenant.id, "cdr")
    assert row.status == SyncState.ERROR.value
    assert row.consecutive_failures == 2
    assert row.total_failures == 2
    assert row.last_error == "again"
    assert ensure_utc(row.last_error_at) == NOW


@pytest.mark.asyncio
async def test_mark_error_creates_missing_row(service, tenant):
    assert await service.mark_error(tenant.id, "recordings", "TUNNEL_UNAVAILABLE: refused") is True
    row = await service.get(tenant.id, "recordings")
    assert row.consecutive_failures == 1
    assert row.last_error == "TUNNEL_UNAVAILABLE: refused"


@pytest.mark.asyncio
async def test_record_failure_leaves_live_cycles_alone(service, tenant):
    await service.try_begin(tenant.id, "messages")

    recorded = await service.record_failure_for_types(tenant.id, ["messages", "cdr"], "tunnel down")

    assert recorded == 1
    assert (await service.get(tenant.id, "messages")).status == SyncState.RUNNING.value
    assert (await service.get(tenant.id, "cdr")).status == SyncState.ERROR.value


@pytest.mark.asyncio
async def test_listing(service, tenant, other_tenant):
    await service.mark_error(tenant.id, "messages", "a")
    await service.mark_error(tenant.id, "cdr", "b")
    await service.mark_error(other_tenant.id, "messages", "c")

    assert [r.sync_type for r in await service.list_for_tenant(tenant.id)] == ["cdr", "messages"]
    assert len(await service.list_all()) == 3
