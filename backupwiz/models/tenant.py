# backupwiz/models/tenant.py
from sqlalchemy import Boolean, Column, DateTime, Integer, JSON, String
from sqlalchemy.sql import func

from backupwiz.database import Base


class Tenant(Base):
    """
    One customer's 3CX deployment.

    Passwords are stored Fernet-encrypted and only decrypted for the
    duration of a sync cycle. Tenants are deactivated, never deleted.
    """
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)

    # SSH access to the 3CX host
    threecx_host = Column(String, nullable=True)
    ssh_port = Column(Integer, default=22, nullable=False)
    ssh_user = Column(String, nullable=True)
    ssh_password_encrypted = Column(String, nullable=True)

    # 3CX PostgreSQL, as seen from the 3CX host
    db_host = Column(String, default="127.0.0.1", nullable=False)
    db_port = Column(Integer, default=5432, nullable=False)
    db_name = Column(String, nullable=True)
    db_user = Column(String, nullable=True)
    db_password_encrypted = Column(String, nullable=True)

    # Remote file locations
    chat_files_path = Column(String, nullable=True)
    recordings_path = Column(String, nullable=True)
    voicemail_path = Column(String, nullable=True)
    fax_path = Column(String, nullable=True)
    meetings_path = Column(String, nullable=True)

    # Per-category backup flags
    backup_chats = Column(Boolean, default=True, nullable=False)
    backup_chat_media = Column(Boolean, default=True, nullable=False)
    backup_recordings = Column(Boolean, default=True, nullable=False)
    backup_voicemails = Column(Boolean, default=True, nullable=False)
    backup_faxes = Column(Boolean, default=False, nullable=False)
    backup_meetings = Column(Boolean, default=False, nullable=False)
    backup_cdr = Column(Boolean, default=True, nullable=False)

    sync_interval_seconds = Column(Integer, default=300, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    sync_enabled = Column(Boolean, default=True, nullable=False)
    admin_emails = Column(JSON, nullable=True)

    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Tenant(id={self.id}, slug='{self.slug}', active={self.is_active})>"
