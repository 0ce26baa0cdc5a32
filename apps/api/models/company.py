"""Company model for prospected leads."""

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class Company(Base):
    """A lead saved by a user."""

    __tablename__ = "companies"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    cnpj = Column(String, nullable=True, index=True)
    cnae = Column(String, nullable=False, default="")
    cnae_description = Column(String, nullable=True)
    city = Column(String, nullable=False, default="")
    state = Column(String, nullable=False, default="")
    email = Column(String, nullable=True)
    address = Column(String, nullable=True)
    cep = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    owner = relationship("Profile", back_populates="companies")
    phones = relationship("CompanyPhone", back_populates="company", cascade="all, delete-orphan")
