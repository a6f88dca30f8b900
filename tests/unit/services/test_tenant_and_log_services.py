# tests/unit/services/test_tenant_and_log_services.py
from datetime import datetime, timezone

import pytest

from backupwiz.core.enums import SyncLogStatus
from backupwiz.core.utils import ensure_utc
from backupwiz.services.sync_log_service import SyncLogService
from backupwiz.services.tenant_service import TenantService


"""
1. Tenants
"""

@pytest.mark.asyncio
async def test_list_active_skips_inactive_and_disabled(session_factory, tenant, make_tenant):
    await make_tenant("initech", is_active=False)
    await make_tenant("umbrella", sync_enabled=False)
    await make_tenant("hooli")

    tenants = await TenantService(session_factory).list_active()

    assert [t.slug for t in tenants] == ["acme", "hooli"]


@pytest.mark.asyncio
async def test_list_active_by_slug(session_factory, tenant, other_tenant):
    tenants = await TenantService(session_factory).list_active(["globex", "missing"])
    assert [t.slug for t in tenants] == ["globex"]


@pytest.mark.asyncio
async def test_touch_last_sync(session_factory, tenant):
    service = TenantService(session_factory)
    when = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)

    await service.touch_last_sync(tenant.id, when)

    reloaded = await service.get_by_slug("acme")
    assert ensure_utc(reloaded.last_sync_at) == when
    assert await service.get_by_slug("nobody") is None


"""
2. Run log
"""

@pytest.mark.asyncio
async def test_run_log_lifecycle(session_factory, tenant, other_tenant):
    logs = SyncLogService(session_factory)

    first = await logs.start_run("run-1", tenant.id, ["extensions", "messages"])
    await logs.start_run("run-1", other_tenant.id, ["cdr"])
    await logs.finish_run(
        first,
        status=SyncLogStatus.PARTIAL,
        items_synced=10,
        items_failed=1,
        errors=[{"sync_type": "messages", "code": "SOURCE_QUERY_ERROR", "message": "bad"}],
    )

    rows = await logs.recent(tenant_id=tenant.id)
    assert len(rows) == 1
    row = rows[0]
    assert row.status == SyncLogStatus.PARTIAL.value
    assert row.sync_types == ["extensions", "messages"]
    assert (row.items_synced, row.items_failed, row.error_count) == (10, 1, 1)
    assert row.completed_at is not None

    assert len(await logs.recent()) == 2
    unfinished = [r for r in await logs.recent() if r.tenant_id == other_tenant.id][0]
    assert unfinished.status == SyncLogStatus.RUNNING.value
