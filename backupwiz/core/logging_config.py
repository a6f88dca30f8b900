# backupwiz/core/logging_config.py
"""
Centralized logging configuration for the sync engine.

This module configures logging levels to reduce noise from verbose libraries
while keeping sync logs visible.
"""

import logging
import os


def configure_logging():
    """
    Configure logging for the sync engine.

    Sets appropriate log levels for different modules:
    - Sync engine code: INFO (or DEBUG if LOG_LEVEL=DEBUG)
    - SSH, database, scheduler and storage clients: WARNING only
    """

    # Get log level from environment, default to INFO
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler()]
    )

    # Quiet SSH/SFTP loggers
    logging.getLogger("asyncssh").setLevel(logging.WARNING)
    logging.getLogger("asyncssh.sftp").setLevel(logging.WARNING)

    # Quiet database loggers
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    # Quiet object storage and HTTP loggers
    logging.getLogger("botocore").setLevel(logging.WARNING)
    logging.getLogger("boto3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    # Scheduler chatter
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    # Keep sync engine loggers at configured level
    logging.getLogger("backupwiz").setLevel(getattr(logging, log_level, logging.INFO))
    logging.getLogger("__main__").setLevel(getattr(logging, log_level, logging.INFO))

    logger = logging.getLogger(__name__)
    logger.info(f"Logging configured at level: {log_level}")
