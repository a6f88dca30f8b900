# backupwiz/models/meeting.py
from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from backupwiz.database import Base


class MeetingRecording(Base):
    __tablename__ = "meeting_recordings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "threecx_meeting_id", name="uq_meeting_recordings_tenant_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    threecx_meeting_id = Column(String, nullable=False, index=True)

    meeting_name = Column(String, nullable=True)
    host_extension = Column(String, nullable=True)
    original_filename = Column(String, nullable=True)
    has_video = Column(Boolean, default=False, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False, index=True)

    source_path = Column(String, nullable=True)
    storage_path = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<MeetingRecording(id={self.id}, source_id='{self.threecx_meeting_id}')>"
