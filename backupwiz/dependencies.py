from typing import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backupwiz.core.config import Settings, get_settings
from backupwiz.database import async_session
from backupwiz.services.health_monitor import HealthMonitor
from backupwiz.services.sync_service import SyncService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency for getting async database sessions."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """Dependency for services that open their own short transactions."""
    return async_session


def get_sync_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> SyncService:
    return SyncService(session_factory, settings)


def get_health_monitor(
    session_factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> HealthMonitor:
    return HealthMonitor(session_factory, settings=settings)
