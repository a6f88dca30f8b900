# backupwiz/models/recording.py
from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from backupwiz.database import Base


class CallRecording(Base):
    __tablename__ = "call_recordings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "threecx_recording_id", name="uq_call_recordings_tenant_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    threecx_recording_id = Column(String, nullable=False, index=True)

    extension = Column(String, nullable=True)
    caller_number = Column(String, nullable=True)
    callee_number = Column(String, nullable=True)
    original_filename = Column(String, nullable=True)
    recording_started_at = Column(DateTime(timezone=True), nullable=False, index=True)
    recording_ended_at = Column(DateTime(timezone=True), nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    # Remote path on the 3CX host; storage_path is set once the blob is mirrored
    source_path = Column(String, nullable=True)
    storage_path = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<CallRecording(id={self.id}, source_id='{self.threecx_recording_id}')>"
