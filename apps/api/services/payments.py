"""PIX checkout and payment settlement.

A paid charge can be observed twice: by the buyer polling its status and by
the provider's webhook. Both paths call ``settle``, which relies on the credit
ledger's per-reference idempotency so the package is credited exactly once.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_package import CreditPackage
from models.profile import Profile
from services.abacatepay import AbacatePayClient
from services.credits import credit, get_package
from services.providers.types import ProviderError, digits_only, nested, text

logger = logging.getLogger(__name__)

PAID_STATUS = "PAID"
PAID_EVENT = "billing.paid"


def build_external_id(user_id: str, package_id: str, now_ms: Optional[int] = None) -> str:
    """Idempotency key for one checkout attempt; a retried checkout gets a new one."""
    timestamp = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{user_id}_{package_id}_{timestamp}"


def _price_in_cents(price: Any) -> int:
    return int((Decimal(str(price)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def _load_active_package(db: AsyncSession, package_id: str) -> CreditPackage:
    package = await get_package(db, package_id)
    if package is None or not package.is_active:
        raise ProviderError("not_found", "Pacote não encontrado")
    return package


async def create_charge(
    db: AsyncSession,
    *,
    user_id: str,
    package_id: str,
    email: Optional[str] = None,
) -> Dict[str, Any]:
    """Create an upstream PIX QR code charge for one credit package."""
    package = await _load_active_package(db, package_id)
    profile = await db.get(Profile, user_id)

    customer_email = (profile.email if profile else None) or email or ""
    if not customer_email:
        raise ProviderError("validation_error", "E-mail do usuário não encontrado")

    customer: Dict[str, Any] = {
        "name": (profile.full_name if profile else None) or "Cliente",
        "cellphone": digits_only(profile.phone if profile else None) or settings.DEFAULT_CUSTOMER_PHONE,
        "email": customer_email,
    }
    tax_id = digits_only(profile.cpf if profile else None)
    if tax_id:
        customer["taxId"] = tax_id

    external_id = build_external_id(user_id, package.id)
    payload = {
        "amount": _price_in_cents(package.price_brl),
        "expiresIn": settings.PIX_EXPIRES_IN_SECONDS,
        "description": f"Pacote {package.name} - {package.total_credits} créditos",
        "customer": customer,
        "metadata": {
            "userId": user_id,
            "packageId": package.id,
            "externalId": external_id,
            "credits": package.credits,
            "bonusCredits": package.bonus_credits,
        },
    }

    charge = await AbacatePayClient().create_pix_charge(payload)
    pix_id = text(charge.get("id"))
    if not pix_id:
        raise ProviderError("upstream_error", "Erro ao criar cobrança PIX", details="missing charge id")

    logger.info("Created PIX charge %s for user %s (reference %s)", pix_id, user_id, external_id)
    return {
        "success": True,
        "pixId": pix_id,
        "brCode": text(charge.get("brCode")),
        "brCodeBase64": text(charge.get("brCodeBase64")),
        "amount": float(package.price_brl),
        "expiresAt": text(charge.get("expiresAt")),
        "packageName": package.name,
        "totalCredits": package.total_credits,
    }


async def settle(
    db: AsyncSession,
    *,
    user_id: str,
    reference_id: str,
    credits: int,
    bonus_credits: int,
    package_name: str,
) -> Dict[str, Optional[str]]:
    """Credit a paid package. The bonus is best-effort and never undoes the purchase."""
    purchase = await credit(
        user_id,
        credits,
        "purchase",
        f"Compra do pacote {package_name} - {credits} créditos",
        reference_id,
        db,
    )

    bonus: Optional[str] = None
    if bonus_credits > 0:
        try:
            bonus = await credit(
                user_id,
                bonus_credits,
                "bonus",
                f"Bônus do pacote {package_name} - {bonus_credits} créditos",
                f"{reference_id}_bonus",
                db,
            )
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.warning("Bonus credit for %s failed: %s", reference_id, exc)

    logger.info("Settled %s for user %s: purchase=%s bonus=%s", reference_id, user_id, purchase, bonus)
    return {"purchase": purchase, "bonus": bonus}


async def poll_status(db: AsyncSession, *, user_id: str, pix_id: str) -> Dict[str, Any]:
    """Report the charge status and settle it when the provider says it is paid."""
    charge = await AbacatePayClient().check_pix_charge(pix_id)
    status = text(charge.get("status")) or "PENDING"
    is_paid = status == PAID_STATUS

    metadata = charge.get("metadata") if isinstance(charge.get("metadata"), dict) else {}
    external_id = text(metadata.get("externalId"))
    if is_paid and external_id:
        metadata_user = text(metadata.get("userId"))
        if metadata_user and metadata_user != user_id:
            logger.warning(
                "PIX %s metadata user %s differs from polling user %s; crediting the polling user",
                pix_id,
                metadata_user,
                user_id,
            )

        package = await get_package(db, text(metadata.get("packageId")))
        credits = _as_int(metadata.get("credits"))
        bonus_credits = _as_int(metadata.get("bonusCredits"))
        if package is None and (credits is None or bonus_credits is None):
            raise ProviderError("not_found", "Pacote não encontrado")
        if credits is None:
            credits = package.credits
        if bonus_credits is None:
            bonus_credits = package.bonus_credits
        package_name = package.name if package is not None else "PIX"

        if credits > 0:
            await settle(
                db,
                user_id=user_id,
                reference_id=external_id,
                credits=credits,
                bonus_credits=bonus_credits,
                package_name=package_name,
            )

    return {"success": True, "status": status, "isPaid": is_paid}


def verify_signature(raw_body: bytes, signature: str) -> bool:
    """Check a base64 HMAC-SHA256 of the raw body against the provider's public key."""
    key = settings.ABACATEPAY_PUBLIC_KEY.encode("utf-8")
    expected = base64.b64encode(hmac.new(key, raw_body, hashlib.sha256).digest())
    return hmac.compare_digest(expected, signature.strip().encode("utf-8"))


def _authenticate_webhook(raw_body: bytes, webhook_secret: Optional[str], signature: Optional[str]) -> None:
    configured = settings.ABACATEPAY_WEBHOOK_SECRET
    if not configured:
        logger.error("ABACATEPAY_WEBHOOK_SECRET not configured; rejecting webhook")
        raise ProviderError("unauthenticated", "Webhook não autorizado")
    if not hmac.compare_digest((webhook_secret or "").encode("utf-8"), configured.encode("utf-8")):
        logger.warning("Webhook rejected: invalid secret")
        raise ProviderError("unauthenticated", "Webhook não autorizado")
    if signature and not verify_signature(raw_body, signature):
        logger.warning("Webhook rejected: invalid signature")
        raise ProviderError("unauthenticated", "Assinatura do webhook inválida")


def _charge_from_event(event: Dict[str, Any]) -> Dict[str, Any]:
    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    for key in ("billing", "pixQrCode"):
        if isinstance(data.get(key), dict):
            return data[key]
    return {}


async def _find_profile_by_email(db: AsyncSession, email: str) -> Optional[Profile]:
    result = await db.execute(select(Profile).where(func.lower(Profile.email) == email.lower()))
    return result.scalars().first()


async def handle_webhook(
    db: AsyncSession,
    *,
    raw_body: bytes,
    webhook_secret: Optional[str],
    signature: Optional[str],
) -> Dict[str, Any]:
    """Authenticate and apply one provider notification."""
    _authenticate_webhook(raw_body, webhook_secret, signature)

    try:
        event = json.loads(raw_body)
    except ValueError as exc:
        raise ProviderError("validation_error", "Payload do webhook inválido") from exc
    if not isinstance(event, dict):
        raise ProviderError("validation_error", "Payload do webhook inválido")

    event_type = text(event.get("event"))
    if event_type != PAID_EVENT:
        logger.info("Ignoring webhook event %s", event_type or "<empty>")
        return {"received": True, "processed": False}

    charge = _charge_from_event(event)
    if not charge:
        raise ProviderError("validation_error", "Dados da cobrança ausentes no webhook")

    metadata = charge.get("metadata") if isinstance(charge.get("metadata"), dict) else {}
    products = charge.get("products") if isinstance(charge.get("products"), list) else []
    first_product = products[0] if products and isinstance(products[0], dict) else {}
    customer = charge.get("customer") if isinstance(charge.get("customer"), dict) else {}

    package_id = text(metadata.get("packageId")) or text(first_product.get("externalId"))
    email = text(nested(customer, "metadata", "email")) or text(customer.get("email"))
    reference_id = text(metadata.get("externalId")) or text(charge.get("id"))

    if not email or not package_id or not reference_id:
        raise ProviderError("validation_error", "Dados obrigatórios ausentes no webhook")

    # The payer is resolved by e-mail, independently of the metadata user id.
    profile = await _find_profile_by_email(db, email)
    if profile is None:
        logger.error("Webhook %s: no profile for payer email", reference_id)
        raise ProviderError("validation_error", "Usuário não encontrado")

    package = await get_package(db, package_id)
    if package is None:
        logger.error("Webhook %s: package %s not found", reference_id, package_id)
        raise ProviderError("validation_error", "Pacote não encontrado")

    result = await settle(
        db,
        user_id=profile.id,
        reference_id=reference_id,
        credits=int(package.credits),
        bonus_credits=int(package.bonus_credits or 0),
        package_name=package.name,
    )
    return {
        "received": True,
        "processed": True,
        "alreadyProcessed": result["purchase"] == "skipped",
    }
