# backupwiz/services/sync_service.py
"""
Sync driver.

For every active tenant this service:
1. Opens the SSH tunnel and the read-only source database connection
2. Runs each enabled entity strategy under the per-(tenant, type) guard
3. Downloads chat media and links it to synced messages
4. Records per-type status, the tenant's run log and ``last_sync_at``

A failure in one entity type does not stop the others; losing the tunnel or
the source database ends the tenant's cycle and marks the remaining types
as failed. Tenants are independent of each other.
"""

import asyncio
import logging
import uuid
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

import asyncssh
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from backupwiz.core.config import Settings, get_settings
from backupwiz.core.enums import SyncLogStatus, SyncType
from backupwiz.core.exceptions import (
    ConfigurationError,
    ConnectivityError,
    DestinationWriteError,
    RecordMappingError,
    SyncCycleTimeoutError,
    SyncError,
    handle_error,
)
from backupwiz.core.retry import RetryPolicy
from backupwiz.core.utils import ensure_utc, utcnow
from backupwiz.models.tenant import Tenant
from backupwiz.services.entity_strategies import (
    FILE_DISCOVERED,
    STRATEGIES,
    EntityStrategy,
    SourcePage,
    SyncContext,
    enabled_sync_types,
    split_side_data,
)
from backupwiz.services.media_linker import MediaLinker
from backupwiz.services.media_sync import MediaSyncService
from backupwiz.services.sync_log_service import SyncLogService
from backupwiz.services.sync_status_service import SyncStatusService
from backupwiz.services.tenant_service import TenantService
from backupwiz.services.upsert import UpsertCounts, upsert_rows
from backupwiz.storage.object_store import ObjectStore, get_object_store
from backupwiz.threecx.connection import SourceSession, open_source
from backupwiz.threecx.files import RemoteFiles
from backupwiz.threecx.reader import ThreeCXReader

logger = logging.getLogger(__name__)

PENDING = "pending"
SUCCESS = "success"
SKIPPED = "skipped"
ERROR = "error"


@dataclass
class EntityResult:
    sync_type: str
    status: str = PENDING
    counts: UpsertCounts = field(default_factory=UpsertCounts)
    items_failed: int = 0
    extra_synced: int = 0
    notes: List[str] = field(default_factory=list)
    error: Optional[SyncError] = None
    full_reconcile_at: Optional[datetime] = None

    @property
    def items_synced(self) -> int:
        return self.counts.written + self.extra_synced

    @property
    def notes_text(self) -> Optional[str]:
        return "; ".join(self.notes) if self.notes else None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sync_type": self.sync_type,
            "status": self.status,
            "inserted": self.counts.inserted,
            "updated": self.counts.updated,
            "unchanged": self.counts.unchanged,
            "items_synced": self.items_synced,
            "items_failed": self.items_failed,
            "notes": self.notes_text,
            "error": str(self.error) if self.error else None,
        }


@dataclass
class TenantSyncResult:
    tenant_id: int
    tenant_slug: str
    sync_run_id: str
    entities: List[EntityResult] = field(default_factory=list)
    error: Optional[SyncError] = None

    @property
    def items_synced(self) -> int:
        return sum(e.items_synced for e in self.entities)

    @property
    def items_failed(self) -> int:
        return sum(e.items_failed for e in self.entities)

    @property
    def errors(self) -> List[Dict[str, Any]]:
        errors = [
            {"sync_type": e.sync_type, "code": e.error.code, "message": str(e.error)}
            for e in self.entities
            if e.error is not None
        ]
        if self.error is not None and not any(err["message"] == str(self.error) for err in errors):
            errors.append({"sync_type": None, "code": self.error.code, "message": str(self.error)})
        return errors

    @property
    def status(self) -> SyncLogStatus:
        failed = [e for e in self.entities if e.status == ERROR]
        succeeded = [e for e in self.entities if e.status == SUCCESS]
        if self.error is not None and not succeeded:
            return SyncLogStatus.ERROR
        if failed or self.error is not None:
            return SyncLogStatus.PARTIAL if succeeded else SyncLogStatus.ERROR
        return SyncLogStatus.SUCCESS

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "tenant": self.tenant_slug,
            "sync_run_id": self.sync_run_id,
            "status": self.status.value,
            "items_synced": self.items_synced,
            "items_failed": self.items_failed,
            "error": str(self.error) if self.error else None,
            "entities": [e.as_dict() for e in self.entities],
        }


@dataclass
class SyncRunReport:
    results: List[TenantSyncResult] = field(default_factory=list)
    failures: Dict[str, str] = field(default_factory=dict)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.status == SyncLogStatus.SUCCESS)

    @property
    def failure_count(self) -> int:
        return len(self.failures) + sum(1 for r in self.results if r.status != SyncLogStatus.SUCCESS)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "tenants": [r.as_dict() for r in self.results],
            "failures": self.failures,
        }


SourceOpener = Callable[[Tenant, Settings], Any]


class SyncService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Optional[Settings] = None,
        *,
        object_store: Optional[ObjectStore] = None,
        source_opener: SourceOpener = open_source,
        strategies: Optional[Sequence[EntityStrategy]] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.status = SyncStatusService(session_factory, self.settings)
        self.logs = SyncLogService(session_factory)
        self.tenants = TenantService(session_factory)
        self.linker = MediaLinker(session_factory)
        self._object_store = object_store
        self.source_opener = source_opener
        self.strategies = list(strategies) if strategies is not None else list(STRATEGIES)

    @property
    def object_store(self) -> ObjectStore:
        if self._object_store is None:
            self._object_store = get_object_store(self.settings)
        return self._object_store

    @property
    def media(self) -> MediaSyncService:
        return MediaSyncService(self.session_factory, self.object_store, self.settings)

    # ------------------------------------------------------------------
    # Guarded execution of one (tenant, sync type)
    # ------------------------------------------------------------------
    async def _guarded(
        self,
        tenant_id: int,
        sync_type: str,
        work: Callable[[EntityResult], Awaitable[None]],
    ) -> EntityResult:
        result = EntityResult(sync_type=sync_type)
        if not await self.status.try_begin(tenant_id, sync_type):
            result.status = SKIPPED
            result.notes.append("already running")
            return result

        timeout = self.settings.SYNC_CYCLE_TIMEOUT_SECONDS
        try:
            await asyncio.wait_for(work(result), timeout=timeout)
        except asyncio.TimeoutError:
            await self._fail(tenant_id, result, SyncCycleTimeoutError(f"{sync_type} sync exceeded {timeout}s"))
            return result
        except SyncError as e:
            await self._fail(tenant_id, result, e)
            return result
        except Exception as e:
            logger.error(f"Unexpected error in {sync_type} sync for tenant {tenant_id}: {e}", exc_info=True)
            await self._fail(tenant_id, result, handle_error(e))
            return result

        await self.status.mark_success(
            tenant_id,
            sync_type,
            items_synced=result.items_synced,
            items_failed=result.items_failed,
            notes=result.notes_text,
            full_reconcile_at=result.full_reconcile_at,
        )
        result.status = SUCCESS
        logger.info(
            f"Tenant {tenant_id} {sync_type}: {result.counts.inserted} inserted, "
            f"{result.counts.updated} updated, {result.counts.unchanged} unchanged, "
            f"{result.items_failed} failed"
        )
        return result

    async def _fail(self, tenant_id: int, result: EntityResult, error: SyncError) -> None:
        result.status = ERROR
        result.error = error
        logger.error(f"Tenant {tenant_id} {result.sync_type} sync failed [{error.code}]: {error}")
        await self.status.mark_error(
            tenant_id,
            result.sync_type,
            f"{error.code}: {error}",
            items_synced=result.items_synced,
            items_failed=result.items_failed,
        )

    # ------------------------------------------------------------------
    # Entity strategies
    # ------------------------------------------------------------------
    async def sync_entity(self, ctx: SyncContext, strategy: EntityStrategy) -> EntityResult:
        async def work(result: EntityResult) -> None:
            row = await self.status.get(ctx.tenant_id, strategy.name)
            ctx.watermark = ensure_utc(row.last_synced_timestamp) if row else None
            ctx.last_full_reconcile_at = row.last_full_reconcile_at if row else None
            ctx.notes = result.notes
            ctx.full_reconcile_done = False

            async for page in strategy.fetch(ctx):
                await self._apply_page(ctx, strategy, page, result)

            if ctx.full_reconcile_done:
                result.full_reconcile_at = utcnow()
            if strategy.file_category and ctx.reader.files is not None:
                transfer = await self.media.mirror_files(ctx.tenant, ctx.reader.files, strategy.model, strategy.file_category)
                if transfer.transferred or transfer.failed:
                    result.notes.append(
                        f"mirrored {transfer.transferred} files, {transfer.failed} failed"
                    )

        return await self._guarded(ctx.tenant_id, strategy.name, work)

    async def _apply_page(
        self,
        ctx: SyncContext,
        strategy: EntityStrategy,
        page: SourcePage,
        result: EntityResult,
    ) -> None:
        """Write one page and advance the watermark in the same transaction."""
        rows: List[Dict[str, Any]] = []
        side: List[Dict[str, Any]] = []
        for record in page.records:
            try:
                row = strategy.to_row(record, ctx)
            except RecordMappingError as e:
                result.items_failed += 1
                logger.warning(f"Tenant {ctx.tenant_id} {strategy.name}: skipping record: {e}")
                continue
            side.append(split_side_data(row))
            rows.append(row)

        async with self.session_factory() as session:
            try:
                if rows and strategy.prepare is not None:
                    await strategy.prepare(session, ctx, rows, side)
                counts, objects = await upsert_rows(
                    session, strategy.model, ctx.tenant_id, strategy.natural_key, rows
                )
                if rows and strategy.after_upsert is not None:
                    await strategy.after_upsert(session, ctx, rows, side, objects)
                await self.status.advance_watermark(session, ctx.tenant_id, strategy.name, page.max_timestamp)
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DestinationWriteError(f"Writing {strategy.name} batch failed: {e}") from e
        result.counts += counts

    # ------------------------------------------------------------------
    # Chat media
    # ------------------------------------------------------------------
    async def sync_media(self, tenant: Tenant, reader: ThreeCXReader) -> EntityResult:
        async def work(result: EntityResult) -> None:
            files = reader.require_files()
            transfer = await self.media.sync_chat_media(tenant, files)
            mappings = await reader.file_mappings()
            plan = await self.linker.link_tenant(tenant.id, mappings)
            result.extra_synced = transfer.transferred + plan.linked
            result.items_failed = transfer.failed
            result.notes.append(
                f"downloaded {transfer.transferred}, linked {plan.linked}, "
                f"awaiting message {plan.no_message}, unmatched files {plan.unmatched_files}"
            )

        return await self._guarded(tenant.id, SyncType.MEDIA.value, work)

    async def link_media(self, tenant: Tenant, source: SourceSession):
        """Run only the linking step, e.g. after a manual media import."""
        reader = ThreeCXReader(source.db)
        return await self.linker.link_tenant(tenant.id, await reader.file_mappings())

    # ------------------------------------------------------------------
    # Tenant cycle
    # ------------------------------------------------------------------
    def plan_for(self, tenant: Tenant, skip: Iterable[str] = ()) -> List[str]:
        """Sync types to run for ``tenant``, in order."""
        configured = {s.name for s in self.strategies} | {SyncType.MEDIA.value}
        return [t for t in enabled_sync_types(tenant, skip) if t in configured]

    async def _open_files(self, source: SourceSession, stack: AsyncExitStack) -> Optional[RemoteFiles]:
        try:
            sftp = await stack.enter_async_context(source.tunnel.connection.start_sftp_client())
        except (asyncssh.Error, OSError) as e:
            logger.warning(f"SFTP unavailable on {source.tunnel.ssh_host}: {e}")
            return None
        return RemoteFiles(sftp, RetryPolicy.from_settings(self.settings))

    async def sync_tenant(
        self,
        tenant: Tenant,
        *,
        skip: Iterable[str] = (),
        full_reconcile: bool = False,
    ) -> TenantSyncResult:
        types = self.plan_for(tenant, skip)
        result = TenantSyncResult(tenant_id=tenant.id, tenant_slug=tenant.slug, sync_run_id=uuid.uuid4().hex)
        if not types:
            logger.info(f"Nothing to sync for tenant {tenant.slug}")
            return result

        log_id = await self.logs.start_run(result.sync_run_id, tenant.id, types)
        attempted: List[str] = []
        logger.info(f"Starting sync {result.sync_run_id} for tenant {tenant.slug}: {', '.join(types)}")
        try:
            async with self.source_opener(tenant, self.settings) as source:
                async with AsyncExitStack() as stack:
                    files = await self._open_files(source, stack) if self._needs_files(types) else None
                    reader = ThreeCXReader(source.db, files, id_chunk_size=self.settings.SYNC_BATCH_SIZE)

                    for strategy in self.strategies:
                        if strategy.name not in types:
                            continue
                        attempted.append(strategy.name)
                        ctx = SyncContext(
                            tenant=tenant,
                            reader=reader,
                            session_factory=self.session_factory,
                            settings=self.settings,
                            force_full_reconcile=full_reconcile,
                        )
                        self._record(result, await self.sync_entity(ctx, strategy))

                    if SyncType.MEDIA.value in types:
                        attempted.append(SyncType.MEDIA.value)
                        self._record(result, await self.sync_media(tenant, reader))
        except (ConnectivityError, ConfigurationError) as e:
            error = e if isinstance(e, SyncError) else SyncError(str(e), code="CONFIGURATION_ERROR")
            result.error = error
            logger.error(f"Sync for tenant {tenant.slug} aborted [{error.code}]: {error}")
            remaining = [t for t in types if t not in attempted]
            await self.status.record_failure_for_types(tenant.id, remaining, f"{error.code}: {error}")
        finally:
            await self.logs.finish_run(
                log_id,
                status=result.status,
                items_synced=result.items_synced,
                items_failed=result.items_failed,
                errors=result.errors,
            )
            await self.tenants.touch_last_sync(tenant.id, utcnow())

        logger.info(
            f"Finished sync {result.sync_run_id} for tenant {tenant.slug}: {result.status.value}, "
            f"{result.items_synced} synced, {result.items_failed} failed"
        )
        return result

    def _record(self, result: TenantSyncResult, entity: EntityResult) -> None:
        """Keep the entity outcome; losing the tunnel or the source database ends the tenant cycle."""
        result.entities.append(entity)
        if isinstance(entity.error, ConnectivityError):
            raise entity.error

    def _needs_files(self, types: Sequence[str]) -> bool:
        file_types = {t.value for t in FILE_DISCOVERED} | {SyncType.MEDIA.value}
        file_types.update(s.name for s in self.strategies if s.file_category)
        return any(t in file_types for t in types)

    # ------------------------------------------------------------------
    # All tenants
    # ------------------------------------------------------------------
    async def run_all(
        self,
        tenant_slugs: Optional[Sequence[str]] = None,
        *,
        skip: Iterable[str] = (),
        full_reconcile: bool = False,
        max_concurrent: Optional[int] = None,
    ) -> SyncRunReport:
        """Sync every active tenant, optionally limited to ``tenant_slugs``."""
        tenants = await self.tenants.list_active(tenant_slugs)
        report = SyncRunReport()
        if not tenants:
            logger.info("No active tenants to sync")
            return report

        semaphore = asyncio.Semaphore(max(1, max_concurrent or self.settings.SYNC_MAX_CONCURRENT_TENANTS))
        skip = list(skip)

        async def run_one(tenant: Tenant) -> TenantSyncResult:
            async with semaphore:
                return await self.sync_tenant(tenant, skip=skip, full_reconcile=full_reconcile)

        outcomes = await asyncio.gather(*(run_one(t) for t in tenants), return_exceptions=True)
        for tenant, outcome in zip(tenants, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"Sync for tenant {tenant.slug} crashed: {outcome}", exc_info=outcome)
                report.failures[tenant.slug] = str(outcome) or outcome.__class__.__name__
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                report.results.append(outcome)

        logger.info(f"Sync run complete: {report.success_count} tenants succeeded, {report.failure_count} failed")
        return report
