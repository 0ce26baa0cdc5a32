"""CreditTransaction model for the append-only credit ledger."""

import uuid

from sqlalchemy import Column, DateTime, Index, Integer, String, text
from sqlalchemy.sql import func

from database import Base


TRANSACTION_TYPES = ("purchase", "consumption", "bonus", "refund")
SETTLED_TYPES = ("purchase", "bonus")


class CreditTransaction(Base):
    """Immutable ledger entry. Positive amounts credit, negative amounts debit."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        # One settlement per external payment reference.
        Index(
            "uq_credit_transactions_settled_reference",
            "reference_id",
            "type",
            unique=True,
            postgresql_where=text("type IN ('purchase', 'bonus')"),
            sqlite_where=text("type IN ('purchase', 'bonus')"),
        ),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(String, nullable=False)  # purchase, consumption, bonus, refund
    description = Column(String, nullable=True)
    reference_id = Column(String, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
