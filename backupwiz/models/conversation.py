# backupwiz/models/conversation.py
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from backupwiz.database import Base


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        UniqueConstraint("tenant_id", "threecx_conversation_id", name="uq_conversations_tenant_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    threecx_conversation_id = Column(String, nullable=False, index=True)

    conversation_name = Column(String, nullable=True)
    channel_type = Column(String, nullable=False, default="internal")
    is_external = Column(Boolean, default=False, nullable=False)
    is_group_chat = Column(Boolean, default=False, nullable=False)
    participant_count = Column(Integer, default=0, nullable=False)
    message_count = Column(Integer, default=0, nullable=False)
    first_message_at = Column(DateTime(timezone=True), nullable=True)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    source_provenance = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    participants = relationship("Participant", back_populates="conversation", cascade="all, delete-orphan")

    def __repr__(self):
        return (f"<Conversation(id={self.id}, source_id='{self.threecx_conversation_id}', "
                f"messages={self.message_count})>")


class Participant(Base):
    __tablename__ = "participants"
    __table_args__ = (
        UniqueConstraint("conversation_id", "extension_number", name="uq_participants_conversation_ext"),
    )

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(Integer, ForeignKey("conversations.id"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    extension_number = Column(String, nullable=False, index=True)
    display_name = Column(String, nullable=True)
    participant_type = Column(String, nullable=True)

    conversation = relationship("Conversation", back_populates="participants")

    def __repr__(self):
        return f"<Participant(conversation_id={self.conversation_id}, ext='{self.extension_number}')>"
