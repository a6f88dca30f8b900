# backupwiz/models/sync_status.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from backupwiz.core.enums import SyncState
from backupwiz.database import Base


class SyncStatus(Base):
    """
    Cross-cycle state for one (tenant, sync type) pair.

    ``last_synced_timestamp`` is the watermark and never decreases. A row in
    ``running`` acts as a lease; it can be taken over once ``last_sync_at``
    is older than the configured lease.
    """
    __tablename__ = "sync_status"
    __table_args__ = (
        UniqueConstraint("tenant_id", "sync_type", name="uq_sync_status_tenant_type"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    sync_type = Column(String, nullable=False, index=True)
    status = Column(String, nullable=False, default=SyncState.IDLE.value)

    last_synced_timestamp = Column(DateTime(timezone=True), nullable=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    last_success_at = Column(DateTime(timezone=True), nullable=True)
    last_error_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
    last_full_reconcile_at = Column(DateTime(timezone=True), nullable=True)

    consecutive_failures = Column(Integer, default=0, nullable=False)
    total_failures = Column(Integer, default=0, nullable=False)
    items_synced = Column(Integer, default=0, nullable=False)
    items_failed = Column(Integer, default=0, nullable=False)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return (f"<SyncStatus(tenant_id={self.tenant_id}, type='{self.sync_type}', "
                f"status='{self.status}', watermark={self.last_synced_timestamp})>")
