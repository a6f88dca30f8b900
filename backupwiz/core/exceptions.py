from typing import Any, Dict, Optional


class BackupWizError(Exception):
    """Base exception for all sync engine errors."""
    pass


class SyncError(BackupWizError):
    """Raised when a sync cycle or one of its steps fails."""

    code = "SYNC_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class ConnectivityError(SyncError):
    """Base exception for failures reaching a tenant's 3CX host. Retried on the next scheduled run."""
    code = "CONNECTIVITY_ERROR"


class TunnelUnavailableError(ConnectivityError):
    """Raised when the SSH session or the port forward cannot be established."""
    code = "TUNNEL_UNAVAILABLE"


class SourceDatabaseUnavailableError(ConnectivityError):
    """Raised when the tunnel is up but the 3CX PostgreSQL server does not answer."""
    code = "SOURCE_DB_UNAVAILABLE"


class SourceQueryError(SyncError):
    """Raised when a read query against the 3CX database fails."""
    code = "SOURCE_QUERY_ERROR"


class RecordMappingError(SyncError):
    """Raised when a single source row cannot be mapped to a destination row."""
    code = "RECORD_MAPPING_ERROR"


class DestinationWriteError(SyncError):
    """Raised when writing a batch to the destination store fails."""
    code = "DESTINATION_WRITE_ERROR"


class StorageError(SyncError):
    """Raised when an object storage or SFTP transfer fails."""
    code = "STORAGE_ERROR"


class SyncCycleTimeoutError(SyncError):
    """Raised when a sync cycle exceeds its wall-clock budget."""
    code = "CYCLE_TIMEOUT"


class SyncAlreadyRunningError(SyncError):
    """Raised when a (tenant, sync type) pair already has a cycle in flight."""
    code = "SYNC_ALREADY_RUNNING"


class ConfigurationError(BackupWizError):
    """Raised when tenant or service configuration is incomplete or invalid."""
    pass


def handle_error(error: BaseException) -> SyncError:
    """Normalise any exception into a SyncError for status rows and run logs."""
    if isinstance(error, SyncError):
        return error
    message = str(error) or error.__class__.__name__
    return SyncError(message, code="UNKNOWN_ERROR", details={"type": error.__class__.__name__})
