"""CompanyPhone model with WhatsApp validation status."""

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class CompanyPhone(Base):
    __tablename__ = "company_phones"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id = Column(String, ForeignKey("companies.id"), nullable=False, index=True)
    phone_number = Column(String, nullable=False)
    phone_type = Column(String, nullable=False, default="landline")  # landline, mobile
    status = Column(String, nullable=False, default="pending")  # pending, valid, invalid, uncertain
    whatsapp_name = Column(String, nullable=True)
    validated_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    company = relationship("Company", back_populates="phones")
