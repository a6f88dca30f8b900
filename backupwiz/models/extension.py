# backupwiz/models/extension.py
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from backupwiz.database import Base


class Extension(Base):
    __tablename__ = "extensions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "extension_number", name="uq_extensions_tenant_number"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    threecx_extension_id = Column(String, nullable=True)
    extension_number = Column(String, nullable=False, index=True)
    first_name = Column(String, nullable=True)
    last_name = Column(String, nullable=True)
    display_name = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Extension(tenant_id={self.tenant_id}, number='{self.extension_number}')>"
