# backupwiz/models/notification_log.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, JSON, String
from sqlalchemy.sql import func

from backupwiz.database import Base


class NotificationLog(Base):
    """Sent alerts. Also the lookup table for alert rate limiting."""
    __tablename__ = "notification_logs"

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    notification_type = Column(String, nullable=False, index=True)
    sync_type = Column(String, nullable=True, index=True)
    channel = Column(String, nullable=False, default="email")
    recipient = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    status = Column(String, nullable=False, default="sent")
    metadata_json = Column(JSON, nullable=True)
    sent_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return (f"<NotificationLog(tenant_id={self.tenant_id}, type='{self.notification_type}', "
                f"sync_type='{self.sync_type}', sent_at={self.sent_at})>")
