"""
Sync health evaluation and alerting.

Health is computed from ``sync_status`` rows on its own schedule, never as
part of a sync cycle. Per tenant and sync type:

    * staleness is minutes since ``last_success_at``, compared against the
      (warning, critical) thresholds for that type
    * a type whose latest error is newer than its latest success and whose
      status is ``error`` is critical regardless of staleness

Tenant and system health are the worst of their parts. Critical types alert
the tenant's admins at most once per rate-limit window.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from backupwiz.core.config import Settings, get_settings
from backupwiz.core.enums import (
    DEFAULT_HEALTH_THRESHOLD,
    HEALTH_THRESHOLDS,
    NEVER_SYNCED_MINUTES,
    SYNC_HEALTH_ALERT,
    HealthLevel,
    NotificationStatus,
    SyncState,
)
from backupwiz.core.utils import ensure_utc, utcnow
from backupwiz.models.notification_log import NotificationLog
from backupwiz.models.sync_status import SyncStatus
from backupwiz.models.tenant import Tenant
from backupwiz.services.entity_strategies import enabled_sync_types
from backupwiz.services.notification_service import EmailNotificationService
from backupwiz.services.tenant_service import TenantService

logger = logging.getLogger(__name__)


@dataclass
class SyncTypeHealth:
    sync_type: str
    level: HealthLevel
    minutes_since_success: int
    status: Optional[str] = None
    last_error: Optional[str] = None
    message: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sync_type": self.sync_type,
            "level": self.level.value,
            "minutes_since_success": self.minutes_since_success,
            "status": self.status,
            "last_error": self.last_error,
            "message": self.message,
        }


def worst(levels: Iterable[HealthLevel]) -> HealthLevel:
    result = HealthLevel.HEALTHY
    for level in levels:
        if level.rank > result.rank:
            result = level
    return result


@dataclass
class TenantHealth:
    tenant_id: int
    tenant_name: str
    sync_types: List[SyncTypeHealth] = field(default_factory=list)

    @property
    def level(self) -> HealthLevel:
        return worst(h.level for h in self.sync_types)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "tenant": self.tenant_name,
            "level": self.level.value,
            "sync_types": [h.as_dict() for h in self.sync_types],
        }


@dataclass
class HealthReport:
    tenants: List[TenantHealth] = field(default_factory=list)
    alerts_sent: int = 0
    alerts_suppressed: int = 0
    tenant_records: Dict[int, Tenant] = field(default_factory=dict, repr=False)

    @property
    def level(self) -> HealthLevel:
        return worst(t.level for t in self.tenants)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "alerts_sent": self.alerts_sent,
            "alerts_suppressed": self.alerts_suppressed,
            "tenants": [t.as_dict() for t in self.tenants],
        }


def evaluate_sync_type(sync_type: str, status: Optional[SyncStatus], now: datetime) -> SyncTypeHealth:
    warning_after, critical_after = HEALTH_THRESHOLDS.get(sync_type, DEFAULT_HEALTH_THRESHOLD)

    last_success = ensure_utc(status.last_success_at) if status is not None else None
    if last_success is None:
        minutes = NEVER_SYNCED_MINUTES
    else:
        minutes = max(0, int((now - last_success).total_seconds() // 60))

    if minutes >= critical_after:
        level = HealthLevel.CRITICAL
    elif minutes >= warning_after:
        level = HealthLevel.WARNING
    else:
        level = HealthLevel.HEALTHY

    health = SyncTypeHealth(
        sync_type=sync_type,
        level=level,
        minutes_since_success=minutes,
        status=status.status if status is not None else None,
        last_error=status.last_error if status is not None else None,
    )

    last_error_at = ensure_utc(status.last_error_at) if status is not None else None
    failing = (
        status is not None
        and status.status == SyncState.ERROR.value
        and last_error_at is not None
        and (last_success is None or last_error_at > last_success)
    )
    if failing:
        health.level = HealthLevel.CRITICAL
        health.message = f"{sync_type} sync has been failing: {status.last_error or 'unknown error'}"
    elif last_success is None:
        health.message = f"{sync_type} sync has never succeeded"
    elif level is not HealthLevel.HEALTHY:
        health.message = f"{sync_type} sync has not succeeded in {minutes} minutes"
    return health


def evaluate_tenant(tenant: Tenant, statuses: Iterable[SyncStatus], now: datetime) -> TenantHealth:
    by_type = {s.sync_type: s for s in statuses}
    # Rows left by types the tenant has since disabled are skipped
    sync_types = enabled_sync_types(tenant)
    return TenantHealth(
        tenant_id=tenant.id,
        tenant_name=tenant.name,
        sync_types=[evaluate_sync_type(t, by_type.get(t), now) for t in sync_types],
    )


class HealthMonitor:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        notifier: Optional[EmailNotificationService] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.notifier = notifier or EmailNotificationService(self.settings)
        self.clock = clock
        self.tenants = TenantService(session_factory)

    @property
    def rate_limit(self) -> timedelta:
        return timedelta(minutes=self.settings.ALERT_RATE_LIMIT_MINUTES)

    async def evaluate(self, tenant_slugs: Optional[List[str]] = None) -> HealthReport:
        now = self.clock()
        tenants = await self.tenants.list_active(tenant_slugs)
        report = HealthReport()
        if not tenants:
            return report
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncStatus).where(SyncStatus.tenant_id.in_([t.id for t in tenants]))
            )
            statuses = list(result.scalars())
        for tenant in tenants:
            report.tenants.append(
                evaluate_tenant(tenant, [s for s in statuses if s.tenant_id == tenant.id], now)
            )
        report.tenant_records = {t.id: t for t in tenants}
        return report

    async def check_all(self, tenant_slugs: Optional[List[str]] = None, send_alerts: bool = True) -> HealthReport:
        """Evaluate every active tenant and alert on critical sync types."""
        report = await self.evaluate(tenant_slugs)
        if send_alerts:
            tenants = report.tenant_records
            for tenant_health in report.tenants:
                for health in tenant_health.sync_types:
                    if health.level is not HealthLevel.CRITICAL:
                        continue
                    sent = await self.alert(tenants[tenant_health.tenant_id], health)
                    if sent:
                        report.alerts_sent += 1
                    else:
                        report.alerts_suppressed += 1
        logger.info(
            f"Health check: overall {report.level.value}, "
            f"{report.alerts_sent} alerts sent, {report.alerts_suppressed} suppressed"
        )
        return report

    async def recently_alerted(self, tenant_id: int, sync_type: str) -> bool:
        since = self.clock() - self.rate_limit
        async with self.session_factory() as session:
            found = await session.scalar(
                select(NotificationLog.id)
                .where(
                    NotificationLog.tenant_id == tenant_id,
                    NotificationLog.notification_type == SYNC_HEALTH_ALERT,
                    NotificationLog.sync_type == sync_type,
                    NotificationLog.status == NotificationStatus.SENT.value,
                    NotificationLog.sent_at >= since,
                )
                .limit(1)
            )
        return found is not None

    async def alert(self, tenant: Tenant, health: SyncTypeHealth) -> bool:
        """Send one critical alert unless one went out inside the rate-limit window."""
        if await self.recently_alerted(tenant.id, health.sync_type):
            logger.info(f"Alert for tenant {tenant.slug} {health.sync_type} suppressed by rate limit")
            return False

        recipients = list(tenant.admin_emails or []) or list(self.settings.NOTIFICATION_EMAILS)
        sent = await self.notifier.send_sync_health_alert(
            tenant_name=tenant.name,
            sync_type=health.sync_type,
            level=health.level.value,
            message=health.message or f"{health.sync_type} sync is critical",
            minutes_since_success=health.minutes_since_success,
            last_error=health.last_error,
            recipients=recipients,
        )
        if not sent:
            return False

        async with self.session_factory() as session:
            session.add(NotificationLog(
                tenant_id=tenant.id,
                notification_type=SYNC_HEALTH_ALERT,
                sync_type=health.sync_type,
                channel="email",
                recipient=", ".join(recipients) or None,
                subject=f"{tenant.name}: {health.sync_type} sync",
                status=NotificationStatus.SENT.value,
                metadata_json=health.as_dict(),
                sent_at=self.clock(),
            ))
            await session.commit()
        return True
