# backupwiz/services/tenant_service.py
import logging
from datetime import datetime
from typing import List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from backupwiz.models.tenant import Tenant

logger = logging.getLogger(__name__)


class TenantService:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    async def list_active(self, slugs: Optional[Sequence[str]] = None) -> List[Tenant]:
        """Tenants that are active and have sync enabled, optionally filtered by slug."""
        query = select(Tenant).where(Tenant.is_active.is_(True), Tenant.sync_enabled.is_(True)).order_by(Tenant.id)
        if slugs:
            query = query.where(Tenant.slug.in_(list(slugs)))
        async with self.session_factory() as session:
            tenants = list((await session.execute(query)).scalars())
        if slugs:
            missing = set(slugs) - {t.slug for t in tenants}
            if missing:
                logger.warning(f"Requested tenants not found or not enabled: {', '.join(sorted(missing))}")
        return tenants

    async def get_by_slug(self, slug: str) -> Optional[Tenant]:
        async with self.session_factory() as session:
            return await session.scalar(select(Tenant).where(Tenant.slug == slug))

    async def touch_last_sync(self, tenant_id: int, when: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(Tenant).where(Tenant.id == tenant_id).values(last_sync_at=when)
            )
            await session.commit()
