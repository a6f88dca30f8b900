"""3CX BackupWiz sync engine."""

__version__ = "0.4.0"
