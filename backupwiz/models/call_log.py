# backupwiz/models/call_log.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from backupwiz.database import Base


class CallLog(Base):
    """Call detail record."""
    __tablename__ = "call_logs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "threecx_call_id", name="uq_call_logs_tenant_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    threecx_call_id = Column(String, nullable=False, index=True)

    caller_number = Column(String, nullable=True)
    caller_name = Column(String, nullable=True)
    callee_number = Column(String, nullable=True)
    callee_name = Column(String, nullable=True)
    extension = Column(String, nullable=True, index=True)
    direction = Column(String, nullable=True)
    status = Column(String, nullable=True)
    ring_duration_seconds = Column(Integer, nullable=True)
    talk_duration_seconds = Column(Integer, nullable=True)
    total_duration_seconds = Column(Integer, nullable=True)
    call_started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    call_answered_at = Column(DateTime(timezone=True), nullable=True)
    call_ended_at = Column(DateTime(timezone=True), nullable=True)
    has_recording = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<CallLog(id={self.id}, source_id='{self.threecx_call_id}', started={self.call_started_at})>"
