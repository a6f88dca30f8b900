"""
Core module exports.
"""
from .enums import (
    SyncType,
    SyncState,
    HealthLevel,
    Provenance,
    ChannelType,
)

from .exceptions import (
    BackupWizError,
    SyncError,
    ConnectivityError,
    TunnelUnavailableError,
    SourceDatabaseUnavailableError,
    SourceQueryError,
    RecordMappingError,
    DestinationWriteError,
    StorageError,
    SyncCycleTimeoutError,
    SyncAlreadyRunningError,
    ConfigurationError,
    handle_error,
)
