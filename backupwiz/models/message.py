# backupwiz/models/message.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from backupwiz.database import Base


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        UniqueConstraint("tenant_id", "threecx_message_id", name="uq_messages_tenant_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    threecx_message_id = Column(String, nullable=False, index=True)

    sender_extension = Column(String, nullable=True)
    sender_name = Column(String, nullable=True)
    sender_type = Column(String, nullable=True)
    message_text = Column(Text, nullable=True)
    message_type = Column(String, default="text", nullable=False)
    has_media = Column(Boolean, default=False, nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=False, index=True)
    source_provenance = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Message(id={self.id}, source_id='{self.threecx_message_id}', sent_at={self.sent_at})>"
