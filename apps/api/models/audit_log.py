"""AuditLog model for external query auditing."""

from sqlalchemy import Column, String, DateTime, JSON
from sqlalchemy.sql import func
import uuid

from database import Base


class AuditLog(Base):
    """One row per external query; never updated."""

    __tablename__ = "audit_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=True, index=True)
    action = Column(String, nullable=False)  # e.g. lookup.cnpj, lookup.cep
    target = Column(String, nullable=True)
    params_json = Column(JSON, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
