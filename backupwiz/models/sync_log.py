# backupwiz/models/sync_log.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.sql import func

from backupwiz.database import Base


class SyncLog(Base):
    """One row per tenant per sync run."""
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True, index=True)
    sync_run_id = Column(String, nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    sync_types = Column(JSON, nullable=True)
    status = Column(String, nullable=False, default="running", index=True)
    started_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    items_synced = Column(Integer, default=0, nullable=False)
    items_failed = Column(Integer, default=0, nullable=False)
    error_count = Column(Integer, default=0, nullable=False)
    error_details = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<SyncLog(run={self.sync_run_id}, tenant_id={self.tenant_id}, status='{self.status}')>"
