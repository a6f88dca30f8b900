# backupwiz/database.py

# type: ignore[misc]
from typing import Any, Dict

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from backupwiz.core.config import Settings, get_settings


def build_engine(settings: Settings) -> AsyncEngine:
    database_url = settings.async_database_url
    if not database_url:
        raise ValueError("DATABASE_URL is not set in environment variables")

    options: Dict[str, Any] = {"echo": False, "future": True}
    if not database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_recycle=settings.DB_POOL_RECYCLE,
        )
    return create_async_engine(database_url, **options)


engine = build_engine(get_settings())

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()

