# backupwiz/models/media_file.py
from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from backupwiz.database import Base


class MediaFile(Base):
    """
    A chat attachment copied from the 3CX chat files directory.

    Rows start orphaned (``message_id`` null, ``file_name`` hash-named) and
    are linked to their message once the source file mapping and the
    message are both available.
    """
    __tablename__ = "media_files"
    __table_args__ = (
        UniqueConstraint("tenant_id", "storage_path", name="uq_media_files_tenant_path"),
        UniqueConstraint("tenant_id", "source_path", name="uq_media_files_tenant_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=True, index=True)

    file_name = Column(String, nullable=False, index=True)
    stored_filename = Column(String, nullable=False)
    # Path under the tenant's chat files directory
    source_path = Column(String, nullable=True)
    content_hash = Column(String, nullable=True, index=True)
    mime_type = Column(String, nullable=True)
    file_type = Column(String, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)
    storage_path = Column(String, nullable=False)
    linked_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<MediaFile(id={self.id}, file_name='{self.file_name}', message_id={self.message_id})>"
