# tests/conftest.py
import os

import pytest
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Settings are read at import time by backupwiz.database, so the environment
# has to point at the test database before anything from backupwiz is imported.
TEST_DATABASE_URL = "sqlite+aiosqlite://"
TEST_ENCRYPTION_KEY = Fernet.generate_key().decode()
TEST_BASIC_AUTH_PASSWORD = "test-password"

os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["ENCRYPTION_KEY"] = TEST_ENCRYPTION_KEY
os.environ["BASIC_AUTH_PASSWORD"] = TEST_BASIC_AUTH_PASSWORD
os.environ["SYNC_SCHEDULE_ENABLED"] = "false"

from backupwiz.core.config import Settings  # noqa: E402
from backupwiz.core.security import encrypt_secret  # noqa: E402
from backupwiz.database import Base  # noqa: E402
import backupwiz.models  # noqa: E402,F401
from backupwiz.models.tenant import Tenant  # noqa: E402


@pytest.fixture
def settings():
    """Provide test settings"""
    return Settings(
        DATABASE_URL=TEST_DATABASE_URL,
        ENCRYPTION_KEY=TEST_ENCRYPTION_KEY,
        BASIC_AUTH_PASSWORD=TEST_BASIC_AUTH_PASSWORD,
        SYNC_BATCH_SIZE=2,
        SYNC_CYCLE_TIMEOUT_SECONDS=30,
        RETRY_ATTEMPTS=1,
        RETRY_INITIAL_WAIT_SECONDS=0,
        RETRY_MAX_WAIT_SECONDS=0,
        RETRY_JITTER_SECONDS=0,
        STORAGE_BACKEND="local",
        NOTIFICATION_EMAILS=["ops@example.com"],
        SMTP_HOST="smtp.example.com",
        SMTP_USERNAME="alerts@example.com",
        SMTP_PASSWORD="smtp-secret",
        SYNC_SCHEDULE_ENABLED=False,
    )


@pytest.fixture(scope="function")
async def test_engine():
    """In-memory database shared by every session of one test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    """Provide a database session for tests"""
    async with session_factory() as session:
        yield session
        await session.rollback()


async def create_tenant(session_factory, slug: str, **overrides) -> Tenant:
    values = dict(
        name=slug.title(),
        slug=slug,
        threecx_host=f"pbx.{slug}.example.com",
        ssh_port=22,
        ssh_user="backup",
        ssh_password_encrypted=encrypt_secret("ssh-pass", TEST_ENCRYPTION_KEY),
        db_host="127.0.0.1",
        db_port=5432,
        db_name="database_single",
        db_user="phonesystem",
        db_password_encrypted=encrypt_secret("db-pass", TEST_ENCRYPTION_KEY),
        chat_files_path="/var/lib/3cxpbx/Instance1/Data/Http/Files/Chat Files",
        recordings_path="/var/lib/3cxpbx/Instance1/Data/Recordings",
        voicemail_path="/var/lib/3cxpbx/Instance1/Data/Voicemail",
        backup_chats=True,
        backup_chat_media=False,
        backup_recordings=False,
        backup_voicemails=False,
        backup_faxes=False,
        backup_meetings=False,
        backup_cdr=True,
        is_active=True,
        sync_enabled=True,
        admin_emails=[f"admin@{slug}.example.com"],
    )
    values.update(overrides)
    async with session_factory() as session:
        tenant = Tenant(**values)
        session.add(tenant)
        await session.commit()
        return tenant


@pytest.fixture
async def tenant(session_factory):
    """An active tenant backing up chats, extensions and call logs only."""
    return await create_tenant(session_factory, "acme")


@pytest.fixture
async def other_tenant(session_factory):
    return await create_tenant(session_factory, "globex")


@pytest.fixture
def make_tenant(session_factory):
    """Factory for additional tenants, e.g. ``await make_tenant("initech", backup_cdr=False)``."""
    async def _make(slug: str, **overrides) -> Tenant:
        return await create_tenant(session_factory, slug, **overrides)
    return _make
