# backupwiz/services/sync_status_service.py
"""
Persistence for per-(tenant, sync type) status rows.

The status row doubles as the single-run guard: ``try_begin`` moves it to
``running`` with a conditional UPDATE, so two processes cannot both own the
same pair. A ``running`` row whose ``last_sync_at`` is older than the lease
is considered abandoned and may be taken over.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from sqlalchemy import and_, func, not_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backupwiz.core.config import Settings, get_settings
from backupwiz.core.enums import SyncState
from backupwiz.core.utils import utcnow
from backupwiz.models.sync_status import SyncStatus

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class SyncStatusService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.clock = clock

    @property
    def lease(self) -> timedelta:
        return timedelta(minutes=self.settings.SYNC_RUNNING_LEASE_MINUTES)

    def _pair(self, tenant_id: int, sync_type: str):
        return and_(SyncStatus.tenant_id == tenant_id, SyncStatus.sync_type == sync_type)

    def _lease_active(self, now: datetime):
        return and_(
            SyncStatus.status == SyncState.RUNNING.value,
            SyncStatus.last_sync_at.is_not(None),
            SyncStatus.last_sync_at >= now - self.lease,
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    async def get(self, tenant_id: int, sync_type: str) -> Optional[SyncStatus]:
        async with self.session_factory() as session:
            return await session.scalar(select(SyncStatus).where(self._pair(tenant_id, sync_type)))

    async def list_for_tenant(self, tenant_id: int) -> List[SyncStatus]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncStatus).where(SyncStatus.tenant_id == tenant_id).order_by(SyncStatus.sync_type)
            )
            return list(result.scalars())

    async def list_all(self) -> List[SyncStatus]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncStatus).order_by(SyncStatus.tenant_id, SyncStatus.sync_type)
            )
            return list(result.scalars())

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------
    async def try_begin(self, tenant_id: int, sync_type: str) -> bool:
        """Atomically move the pair to ``running``. False if another cycle holds it."""
        now = self.clock()
        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncStatus)
                .where(self._pair(tenant_id, sync_type), not_(self._lease_active(now)))
                .values(status=SyncState.RUNNING.value, last_sync_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await session.commit()
                return True

            exists = await session.scalar(select(SyncStatus.id).where(self._pair(tenant_id, sync_type)))
            if exists is not None:
                await session.rollback()
                logger.info(f"Sync {sync_type} for tenant {tenant_id} already running; skipping")
                return False

            session.add(SyncStatus(
                tenant_id=tenant_id,
                sync_type=sync_type,
                status=SyncState.RUNNING.value,
                last_sync_at=now,
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.info(f"Sync {sync_type} for tenant {tenant_id} was claimed concurrently; skipping")
                return False
            return True

    async def advance_watermark(
        self,
        session: AsyncSession,
        tenant_id: int,
        sync_type: str,
        watermark: Optional[datetime],
    ) -> None:
        """Raise the watermark inside the caller's transaction. Never lowers it."""
        if watermark is None:
            return
        await session.execute(
            update(SyncStatus)
            .where(
                self._pair(tenant_id, sync_type),
                or_(SyncStatus.last_synced_timestamp.is_(None), SyncStatus.last_synced_timestamp < watermark),
            )
            .values(last_synced_timestamp=watermark)
            .execution_options(synchronize_session=False)
        )

    async def mark_success(
        self,
        tenant_id: int,
        sync_type: str,
        *,
        items_synced: int = 0,
        items_failed: int = 0,
        notes: Optional[str] = None,
        full_reconcile_at: Optional[datetime] = None,
    ) -> None:
        now = self.clock()
        values = dict(
            status=SyncState.IDLE.value,
            last_sync_at=now,
            last_success_at=now,
            last_error=None,
            consecutive_failures=0,
            items_synced=items_synced,
            items_failed=items_failed,
            notes=notes,
        )
        if full_reconcile_at is not None:
            values["last_full_reconcile_at"] = full_reconcile_at
        async with self.session_factory() as session:
            await session.execute(
                update(SyncStatus)
                .where(self._pair(tenant_id, sync_type))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    async def mark_error(
        self,
        tenant_id: int,
        sync_type: str,
        message: str,
        *,
        items_synced: int = 0,
        items_failed: int = 0,
        respect_active_lease: bool = False,
    ) -> bool:
        """Record a failed cycle. Creates the row if this was the first attempt.

        With ``respect_active_lease`` a row held by another live cycle is left
        alone; returns False in that case.
        """
        now = self.clock()
        message = (message or "Unknown error")[:MAX_ERROR_LENGTH]
        conditions = [self._pair(tenant_id, sync_type)]
        if respect_active_lease:
            conditions.append(not_(self._lease_active(now)))

        async with self.session_factory() as session:
            result = await session.execute(
                update(SyncStatus)
                .where(*conditions)
                .values(
                    status=SyncState.ERROR.value,
                    last_sync_at=now,
                    last_error_at=now,
                    last_error=message,
                    consecutive_failures=SyncStatus.consecutive_failures + 1,
                    total_failures=SyncStatus.total_failures + 1,
                    items_synced=items_synced,
                    items_failed=items_failed,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                await session.commit()
                return True

            exists = await session.scalar(select(func.count(SyncStatus.id)).where(self._pair(tenant_id, sync_type)))
            if exists:
                await session.rollback()
                return False

            session.add(SyncStatus(
                tenant_id=tenant_id,
                sync_type=sync_type,
                status=SyncState.ERROR.value,
                last_sync_at=now,
                last_error_at=now,
                last_error=message,
                consecutive_failures=1,
                total_failures=1,
                items_synced=items_synced,
                items_failed=items_failed,
            ))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
            return True

    async def record_failure_for_types(self, tenant_id: int, sync_types: Iterable[str], message: str) -> int:
        """Mark every given type as failed, e.g. when the tunnel could not be opened."""
        recorded = 0
        for sync_type in sync_types:
            if await self.mark_error(tenant_id, sync_type, message, respect_active_lease=True):
                recorded += 1
        return recorded
