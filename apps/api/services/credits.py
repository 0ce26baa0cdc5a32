"""Credit ledger and credit package helpers."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.credit_package import CreditPackage
from models.credit_transaction import SETTLED_TYPES, CreditTransaction
from models.user_credits import UserCredits

logger = logging.getLogger(__name__)

CreditOutcome = Literal["applied", "skipped"]
CREDIT_TYPES = ("purchase", "bonus", "refund")
RECENT_TRANSACTIONS_LIMIT = 50


async def get_balance(user_id: str, db: AsyncSession) -> int:
    result = await db.execute(select(UserCredits.balance).where(UserCredits.user_id == user_id))
    return int(result.scalar_one_or_none() or 0)


async def _already_settled(db: AsyncSession, reference_id: str, tx_type: str) -> bool:
    result = await db.execute(
        select(CreditTransaction.id).where(
            CreditTransaction.reference_id == reference_id,
            CreditTransaction.type == tx_type,
        )
    )
    return result.first() is not None


async def _ensure_balance_row(user_id: str, db: AsyncSession) -> None:
    result = await db.execute(select(UserCredits.id).where(UserCredits.user_id == user_id))
    if result.scalar_one_or_none():
        return
    db.add(UserCredits(user_id=user_id, balance=0))
    try:
        await db.commit()
    except IntegrityError:
        # Created concurrently by another settlement.
        await db.rollback()


async def credit(
    user_id: str,
    amount: int,
    tx_type: str,
    description: str,
    reference_id: Optional[str],
    db: AsyncSession,
) -> CreditOutcome:
    """Apply a positive credit at most once per (reference_id, type).

    The lookup below only short-circuits the common case. The partial unique
    index on credit_transactions is what rejects a racing second insert, and
    that rejection is reported as "skipped" rather than as an error.
    """
    if tx_type not in CREDIT_TYPES:
        raise ValueError(f"Unsupported credit type: {tx_type}")
    credits = int(amount)
    if credits <= 0:
        raise ValueError("amount must be greater than 0")

    idempotent = bool(reference_id) and tx_type in SETTLED_TYPES
    if idempotent and await _already_settled(db, reference_id, tx_type):
        logger.info("Credit %s/%s already applied, skipping", reference_id, tx_type)
        return "skipped"

    await _ensure_balance_row(user_id, db)
    db.add(
        CreditTransaction(
            user_id=user_id,
            amount=credits,
            type=tx_type,
            description=description,
            reference_id=reference_id,
        )
    )
    try:
        await db.flush()
        await db.execute(
            update(UserCredits)
            .where(UserCredits.user_id == user_id)
            .values(balance=UserCredits.balance + credits, updated_at=func.now())
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        if not idempotent:
            raise
        logger.info("Credit %s/%s applied concurrently, skipping", reference_id, tx_type)
        return "skipped"

    logger.info("Applied %s credits (%s) to user %s", credits, tx_type, user_id)
    return "applied"


async def consume(
    user_id: str,
    amount: int,
    description: str,
    db: AsyncSession,
    reference_id: Optional[str] = None,
) -> bool:
    """Debit the balance if it covers the amount. Returns False without mutating otherwise."""
    debit = int(amount)
    if debit <= 0:
        raise ValueError("amount must be greater than 0")

    # Compare-and-swap on the balance row keeps concurrent debits from overdrawing.
    result = await db.execute(
        update(UserCredits)
        .where(UserCredits.user_id == user_id, UserCredits.balance >= debit)
        .values(balance=UserCredits.balance - debit, updated_at=func.now())
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.info("Insufficient credits for user %s (requested %s)", user_id, debit)
        return False

    db.add(
        CreditTransaction(
            user_id=user_id,
            amount=-debit,
            type="consumption",
            description=description,
            reference_id=reference_id,
        )
    )
    await db.commit()
    return True


async def list_transactions(
    user_id: str,
    db: AsyncSession,
    limit: int = RECENT_TRANSACTIONS_LIMIT,
) -> List[CreditTransaction]:
    result = await db.execute(
        select(CreditTransaction)
        .where(CreditTransaction.user_id == user_id)
        .order_by(CreditTransaction.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


def serialize_transaction(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "amount": entry.amount,
        "type": entry.type,
        "description": entry.description,
        "referenceId": entry.reference_id,
        "createdAt": entry.created_at.isoformat() if entry.created_at else None,
    }


async def get_credit_summary(user_id: str, db: AsyncSession) -> Dict[str, Any]:
    balance = await get_balance(user_id, db)
    entries = await list_transactions(user_id, db)
    return {
        "balance": balance,
        "transactions": [serialize_transaction(entry) for entry in entries],
    }


async def list_active_packages(db: AsyncSession) -> List[CreditPackage]:
    result = await db.execute(
        select(CreditPackage).where(CreditPackage.is_active.is_(True)).order_by(CreditPackage.position.asc())
    )
    return list(result.scalars().all())


async def get_package(db: AsyncSession, package_id: str) -> Optional[CreditPackage]:
    result = await db.execute(select(CreditPackage).where(CreditPackage.id == package_id))
    return result.scalar_one_or_none()


def serialize_package(package: CreditPackage) -> Dict[str, Any]:
    return {
        "id": package.id,
        "name": package.name,
        "price": float(package.price_brl),
        "credits": package.credits,
        "bonusCredits": package.bonus_credits,
        "totalCredits": package.total_credits,
        "position": package.position,
    }
