# backupwiz/services/sync_log_service.py
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from backupwiz.core.enums import SyncLogStatus
from backupwiz.core.utils import utcnow
from backupwiz.models.sync_log import SyncLog

logger = logging.getLogger(__name__)


class SyncLogService:
    """
    Writes one ``sync_logs`` row per tenant per run.

    The row is created as ``running`` when the tenant's cycle starts and
    closed with the outcome and counts when it ends, so an interrupted
    process leaves a visible ``running`` row behind.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def start_run(self, sync_run_id: str, tenant_id: int, sync_types: List[str]) -> int:
        async with self.session_factory() as session:
            log = SyncLog(
                sync_run_id=sync_run_id,
                tenant_id=tenant_id,
                sync_types=sync_types,
                status=SyncLogStatus.RUNNING.value,
                started_at=utcnow(),
            )
            session.add(log)
            await session.commit()
            return log.id

    async def finish_run(
        self,
        log_id: int,
        *,
        status: SyncLogStatus,
        items_synced: int = 0,
        items_failed: int = 0,
        errors: Optional[List[Dict[str, Any]]] = None,
    ) -> None:
        errors = errors or []
        async with self.session_factory() as session:
            await session.execute(
                update(SyncLog)
                .where(SyncLog.id == log_id)
                .values(
                    status=status.value,
                    completed_at=utcnow(),
                    items_synced=items_synced,
                    items_failed=items_failed,
                    error_count=len(errors),
                    error_details=errors or None,
                )
            )
            await session.commit()
        logger.debug(f"Sync log {log_id} closed with status {status.value}")

    async def recent(self, tenant_id: Optional[int] = None, limit: int = 50) -> List[SyncLog]:
        async with self.session_factory() as session:
            query = select(SyncLog).order_by(SyncLog.started_at.desc(), SyncLog.id.desc()).limit(limit)
            if tenant_id is not None:
                query = query.where(SyncLog.tenant_id == tenant_id)
            result = await session.execute(query)
            return list(result.scalars())
