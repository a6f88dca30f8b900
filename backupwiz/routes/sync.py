# backupwiz/routes/sync.py
"""
Manual "sync now" trigger and read-only views of sync state.

A triggered run is queued in the background so the request returns
immediately; callers poll ``/api/sync/runs/{sync_run_id}`` for the outcome.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from backupwiz.core.enums import SyncType
from backupwiz.dependencies import get_health_monitor, get_sync_service
from backupwiz.services.health_monitor import HealthMonitor
from backupwiz.services.sync_service import SyncService

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/sync", tags=["sync"])

_active_sync_tasks: Dict[str, asyncio.Task] = {}
_sync_history: Dict[str, Dict[str, Any]] = {}
HISTORY_LIMIT = 25


class SyncTriggerRequest(BaseModel):
    tenants: Optional[List[str]] = None
    skip: List[str] = Field(default_factory=list)
    full_reconcile: bool = False
    max_concurrent: Optional[int] = Field(default=None, ge=1, le=10)


def _serialize_status(row) -> Dict[str, Any]:
    def iso(value: Optional[datetime]) -> Optional[str]:
        return value.isoformat() if value else None

    return {
        "tenant_id": row.tenant_id,
        "sync_type": row.sync_type,
        "status": row.status,
        "last_synced_timestamp": iso(row.last_synced_timestamp),
        "last_sync_at": iso(row.last_sync_at),
        "last_success_at": iso(row.last_success_at),
        "last_error_at": iso(row.last_error_at),
        "last_error": row.last_error,
        "consecutive_failures": row.consecutive_failures,
        "items_synced": row.items_synced,
        "items_failed": row.items_failed,
        "notes": row.notes,
    }


@router.post("/trigger")
async def trigger_sync(
    request: SyncTriggerRequest,
    service: SyncService = Depends(get_sync_service),
):
    """Queue a sync run without blocking the request."""
    valid_types = {t.value for t in SyncType}
    unknown = sorted(set(request.skip) - valid_types)
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown sync types: {', '.join(unknown)}")

    run_id = str(uuid.uuid4())
    logger.info(
        "Queueing sync run %s (tenants=%s, skip=%s, full_reconcile=%s)",
        run_id,
        request.tenants or "all",
        request.skip or "none",
        request.full_reconcile,
    )

    task = asyncio.get_running_loop().create_task(
        service.run_all(
            request.tenants,
            skip=request.skip,
            full_reconcile=request.full_reconcile,
            max_concurrent=request.max_concurrent,
        )
    )
    _active_sync_tasks[run_id] = task

    def _finalize(t: asyncio.Task, sync_id: str) -> None:
        _active_sync_tasks.pop(sync_id, None)
        completed_at = datetime.now(timezone.utc).isoformat()
        if t.cancelled():
            _sync_history[sync_id] = {"status": "cancelled", "sync_run_id": sync_id, "completed_at": completed_at}
        elif t.exception() is not None:
            exc = t.exception()
            logger.error("Sync run %s failed", sync_id, exc_info=exc)
            _sync_history[sync_id] = {
                "status": "error",
                "message": str(exc),
                "sync_run_id": sync_id,
                "completed_at": completed_at,
            }
        else:
            report = t.result()
            _sync_history[sync_id] = {
                "status": "completed",
                "sync_run_id": sync_id,
                "completed_at": completed_at,
                **report.as_dict(),
            }

        # Keep the history bounded
        if len(_sync_history) > HISTORY_LIMIT:
            for stale_id in list(_sync_history.keys())[:-HISTORY_LIMIT]:
                _sync_history.pop(stale_id, None)

    task.add_done_callback(lambda t, sync_id=run_id: _finalize(t, sync_id))

    return {
        "status": "queued",
        "message": "Sync run scheduled in the background",
        "sync_run_id": run_id,
        "tenants": request.tenants,
        "skip": request.skip,
    }


@router.get("/runs/{sync_run_id}")
async def get_sync_run(sync_run_id: str) -> Dict[str, Any]:
    if sync_run_id in _active_sync_tasks:
        return {"status": "running", "sync_run_id": sync_run_id}

    result = _sync_history.get(sync_run_id)
    if result is not None:
        return result

    raise HTTPException(status_code=404, detail="Unknown sync run id")


@router.get("/status")
async def get_sync_status(
    tenant_id: Optional[int] = None,
    service: SyncService = Depends(get_sync_service),
):
    """Per-(tenant, sync type) status rows."""
    if tenant_id is not None:
        rows = await service.status.list_for_tenant(tenant_id)
    else:
        rows = await service.status.list_all()
    return {"count": len(rows), "statuses": [_serialize_status(r) for r in rows]}


@router.get("/logs")
async def get_sync_logs(
    tenant_id: Optional[int] = None,
    limit: int = 50,
    service: SyncService = Depends(get_sync_service),
):
    logs = await service.logs.recent(tenant_id=tenant_id, limit=min(max(limit, 1), 500))
    return {
        "count": len(logs),
        "logs": [
            {
                "sync_run_id": log.sync_run_id,
                "tenant_id": log.tenant_id,
                "sync_types": log.sync_types,
                "status": log.status,
                "started_at": log.started_at.isoformat() if log.started_at else None,
                "completed_at": log.completed_at.isoformat() if log.completed_at else None,
                "items_synced": log.items_synced,
                "items_failed": log.items_failed,
                "error_count": log.error_count,
                "error_details": log.error_details,
            }
            for log in logs
        ],
    }


@router.get("/health")
async def get_sync_health(monitor: HealthMonitor = Depends(get_health_monitor)):
    """Current health per tenant and sync type. Does not send alerts."""
    report = await monitor.evaluate()
    return report.as_dict()
