# backupwiz/core/config.py

import os
from functools import lru_cache
from typing import List, Optional, Annotated
from pydantic import ConfigDict, BeforeValidator
from pydantic_settings import BaseSettings


def _parse_email_list(value):
    if value in (None, "", []):
        return []
    if isinstance(value, str):
        return [email.strip() for email in value.split(",") if email.strip()]
    if isinstance(value, (list, tuple, set)):
        return [str(email).strip() for email in value if str(email).strip()]
    return []


class Settings(BaseSettings):
    """
    Sync engine settings.
    Loads values from environment variables (.env file)
    """
    # Destination database
    DATABASE_URL: str = ""
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800

    # Fernet key used to decrypt stored tenant passwords
    ENCRYPTION_KEY: str = ""

    # SSH tunnel
    SSH_CONNECT_TIMEOUT_SECONDS: float = 30.0
    SSH_KEEPALIVE_SECONDS: int = 10
    SSH_KNOWN_HOSTS: Optional[str] = None

    # 3CX source database (reached through the tunnel)
    SOURCE_CONNECT_TIMEOUT_SECONDS: float = 15.0
    SOURCE_QUERY_TIMEOUT_SECONDS: float = 60.0
    SOURCE_DB_NAME: str = "database_single"
    SOURCE_DB_USER: str = "phonesystem"
    SOURCE_DB_PORT: int = 5432

    # Sync driver
    SYNC_BATCH_SIZE: int = 500
    SYNC_CYCLE_TIMEOUT_SECONDS: float = 600.0
    SYNC_RUNNING_LEASE_MINUTES: int = 30
    SYNC_MAX_CONCURRENT_TENANTS: int = 1
    FULL_RECONCILE_INTERVAL_MINUTES: int = 360

    # Retry policy for remote I/O
    RETRY_ATTEMPTS: int = 3
    RETRY_INITIAL_WAIT_SECONDS: float = 1.0
    RETRY_MAX_WAIT_SECONDS: float = 20.0
    RETRY_JITTER_SECONDS: float = 1.0

    # Health monitor
    ALERT_RATE_LIMIT_MINUTES: int = 60

    # Object storage
    STORAGE_BACKEND: str = "local"  # local | spaces
    LOCAL_STORAGE_DIR: str = "var/storage"
    SPACES_ENDPOINT: str = ""
    SPACES_REGION: str = "nyc3"
    SPACES_BUCKET: str = ""
    SPACES_KEY: str = ""
    SPACES_SECRET: str = ""

    # Scheduling
    SYNC_SCHEDULE_ENABLED: bool = False
    SYNC_SCHEDULE: str = "*/5 * * * *"
    HEALTH_CHECK_SCHEDULE: str = "*/10 * * * *"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Basic Auth
    BASIC_AUTH_USERNAME: str = "admin"
    BASIC_AUTH_PASSWORD: Optional[str] = None

    # Email notifications
    NOTIFICATION_EMAILS: Annotated[List[str], BeforeValidator(lambda v: _parse_email_list(v))] = []

    # SMTP / Email
    SMTP_HOST: str = ""
    SMTP_PORT: int = 587
    SMTP_USERNAME: str = ""
    SMTP_PASSWORD: str = ""
    SMTP_USE_TLS: bool = True
    SMTP_USE_SSL: bool = False
    SMTP_TIMEOUT: int = 30
    SMTP_FROM_EMAIL: Optional[str] = None
    SMTP_FROM_NAME: Optional[str] = None

    model_config = ConfigDict(
        env_file=os.environ.get('ENV_FILE', '.env') if os.path.exists(os.environ.get('ENV_FILE', '.env')) else None,
        case_sensitive=True,
        extra="ignore",
    )

    @property
    def async_database_url(self) -> str:
        url = self.DATABASE_URL or os.environ.get('DATABASE_URL', '')
        # Convert postgresql:// to postgresql+asyncpg:// for async support
        if url.startswith('postgresql://'):
            url = url.replace('postgresql://', 'postgresql+asyncpg://', 1)
        return url


@lru_cache()
def get_settings():
    """Cached settings to avoid loading .env file for every request"""
    return Settings()


def clear_settings_cache():
    """Clear the settings cache - useful when switching between environments"""
    get_settings.cache_clear()
