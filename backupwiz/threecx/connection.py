"""
Read-only connection to a tenant's 3CX PostgreSQL database through the tunnel.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from backupwiz.core.config import Settings, get_settings
from backupwiz.core.exceptions import SourceDatabaseUnavailableError, SourceQueryError
from backupwiz.core.retry import RetryPolicy, call_with_retry
from backupwiz.core.security import decrypt_secret
from backupwiz.models.tenant import Tenant
from backupwiz.threecx.tunnel import LocalEndpoint, SSHTunnel

logger = logging.getLogger(__name__)


class SourceDatabase:
    """Executes parameterised read-only queries against the 3CX database."""

    def __init__(
        self,
        endpoint: LocalEndpoint,
        *,
        database: str,
        user: str,
        password: str,
        connect_timeout: float = 15.0,
        query_timeout: float = 60.0,
        retry_policy: Optional[RetryPolicy] = None,
        label: str = "",
    ):
        self.endpoint = endpoint
        self.database = database
        self.user = user
        self._password = password
        self.connect_timeout = connect_timeout
        self.query_timeout = query_timeout
        self.retry_policy = retry_policy
        self.label = label or f"{endpoint.host}:{endpoint.port}/{database}"
        self._engine: Optional[AsyncEngine] = None

    def _build_engine(self) -> AsyncEngine:
        url = URL.create(
            "postgresql+asyncpg",
            username=self.user,
            password=self._password,
            host=self.endpoint.host,
            port=self.endpoint.port,
            database=self.database,
        )
        return create_async_engine(
            url,
            pool_size=2,
            max_overflow=0,
            pool_pre_ping=True,
            connect_args={
                "timeout": self.connect_timeout,
                "command_timeout": self.query_timeout,
                "server_settings": {"application_name": "backupwiz-sync"},
            },
        )

    async def connect(self) -> None:
        """Create the engine and probe the server with ``SELECT 1``."""
        if self._engine is not None:
            return
        self._engine = self._build_engine()
        try:
            async with self._engine.connect() as conn:
                await asyncio.wait_for(conn.execute(text("SELECT 1")), timeout=self.connect_timeout)
        except (SQLAlchemyError, OSError, asyncio.TimeoutError) as e:
            await self.dispose()
            logger.error(f"3CX source database unreachable at {self.label}: {e}")
            raise SourceDatabaseUnavailableError(
                f"3CX source database unreachable at {self.label}: {e}"
            ) from e
        logger.debug(f"Connected to 3CX source database {self.label}")

    async def _fetch(self, sql: str, params: Mapping[str, Any]) -> List[Dict[str, Any]]:
        async with self._engine.connect() as conn:
            await conn.execute(text("SET TRANSACTION READ ONLY"))
            result = await conn.execute(text(sql), dict(params))
            rows = [dict(row) for row in result.mappings()]
            await conn.rollback()
            return rows

    async def fetch_all(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        if self._engine is None:
            raise SourceDatabaseUnavailableError(f"3CX source database {self.label} is not connected")
        try:
            return await call_with_retry(self._fetch, sql, params or {}, policy=self.retry_policy)
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.error(f"Lost connection to 3CX source database {self.label}: {e}")
                raise SourceDatabaseUnavailableError(
                    f"Lost connection to 3CX source database {self.label}"
                ) from e
            logger.error(f"3CX source query failed on {self.label}: {e.orig}")
            raise SourceQueryError(f"3CX source query failed: {e.orig}") from e
        except SQLAlchemyError as e:
            logger.error(f"3CX source query failed on {self.label}: {e}")
            raise SourceQueryError(f"3CX source query failed: {e}") from e
        except (OSError, asyncio.TimeoutError) as e:
            raise SourceDatabaseUnavailableError(
                f"3CX source database {self.label} stopped responding: {e}"
            ) from e

    async def dispose(self) -> None:
        engine, self._engine = self._engine, None
        if engine is not None:
            await engine.dispose()


@dataclass
class SourceSession:
    """A tenant's tunnel and source database, valid for one sync cycle."""
    tunnel: SSHTunnel
    db: SourceDatabase


def build_tunnel(tenant: Tenant, settings: Settings) -> SSHTunnel:
    return SSHTunnel(
        tenant.threecx_host,
        tenant.ssh_port or 22,
        tenant.ssh_user,
        decrypt_secret(tenant.ssh_password_encrypted, settings.ENCRYPTION_KEY),
        tenant.db_host or "127.0.0.1",
        tenant.db_port or settings.SOURCE_DB_PORT,
        connect_timeout=settings.SSH_CONNECT_TIMEOUT_SECONDS,
        keepalive_interval=settings.SSH_KEEPALIVE_SECONDS,
        known_hosts=settings.SSH_KNOWN_HOSTS or None,
    )


@asynccontextmanager
async def open_source(tenant: Tenant, settings: Optional[Settings] = None) -> AsyncIterator[SourceSession]:
    """Acquire tunnel + source database for one tenant and release both on every exit path."""
    settings = settings or get_settings()
    tunnel = build_tunnel(tenant, settings)
    db: Optional[SourceDatabase] = None
    try:
        endpoint = await tunnel.open()
        db = SourceDatabase(
            endpoint,
            database=tenant.db_name or settings.SOURCE_DB_NAME,
            user=tenant.db_user or settings.SOURCE_DB_USER,
            password=decrypt_secret(tenant.db_password_encrypted, settings.ENCRYPTION_KEY),
            connect_timeout=settings.SOURCE_CONNECT_TIMEOUT_SECONDS,
            query_timeout=settings.SOURCE_QUERY_TIMEOUT_SECONDS,
            retry_policy=RetryPolicy.from_settings(settings),
            label=f"{tenant.slug}:{tenant.db_name or settings.SOURCE_DB_NAME}",
        )
        await db.connect()
        yield SourceSession(tunnel=tunnel, db=db)
    finally:
        if db is not None:
            await db.dispose()
        await tunnel.close()
