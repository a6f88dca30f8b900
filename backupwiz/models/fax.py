# backupwiz/models/fax.py
from sqlalchemy import BigInteger, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from backupwiz.database import Base


class Fax(Base):
    __tablename__ = "faxes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "threecx_fax_id", name="uq_faxes_tenant_source"),
    )

    id = Column(Integer, primary_key=True, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    threecx_fax_id = Column(String, nullable=False, index=True)

    direction = Column(String, nullable=True)
    remote_number = Column(String, nullable=True)
    original_filename = Column(String, nullable=True)
    fax_time = Column(DateTime(timezone=True), nullable=False, index=True)

    source_path = Column(String, nullable=True)
    storage_path = Column(String, nullable=True)
    mime_type = Column(String, nullable=True)
    file_size_bytes = Column(BigInteger, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Fax(id={self.id}, source_id='{self.threecx_fax_id}')>"
