"""WhatsApp presence checks for saved company phones (Evolution API)."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.company import Company
from models.company_phone import CompanyPhone
from services.providers import transport
from services.providers.types import ProviderError, digits_only, text

logger = logging.getLogger(__name__)

PROVIDER = "Evolution API"
PHONE_STATUSES = ("valid", "invalid", "uncertain")


def whatsapp_number(phone_number: str) -> str:
    number = digits_only(phone_number)
    if not number.startswith("55"):
        number = f"55{number}"
    return number


def _evolution_url() -> str:
    base = transport.credential("EVOLUTION_API_URL", "Evolution API não configurada").rstrip("/")
    if base.endswith("/manager"):
        base = base[: -len("/manager")]
    instance = transport.credential("EVOLUTION_INSTANCE_NAME", "Evolution API não configurada")
    return f"{base}/chat/whatsappNumbers/{instance}"


async def check_whatsapp(phone_number: str) -> Dict[str, Any]:
    """Return {"status", "whatsappName"?} for one number; upstream trouble is reported as uncertain."""
    url = _evolution_url()
    api_key = transport.credential("EVOLUTION_API_KEY", "Evolution API não configurada")
    number = whatsapp_number(phone_number)
    logger.info("Checking WhatsApp for %s", number)

    try:
        response = await transport.send(
            "POST",
            url,
            provider=PROVIDER,
            headers={"Content-Type": "application/json", "apikey": api_key},
            json_body={"numbers": [number]},
        )
    except ProviderError as exc:
        logger.warning("Evolution API call failed for %s: %s", number, exc.message)
        return {"status": "uncertain"}

    if response.status_code >= 400:
        logger.warning("Evolution API error for %s: %s %s", number, response.status_code, transport.diagnostic(response))
        return {"status": "uncertain"}

    data = transport.parse_json_body(response)
    first = data[0] if isinstance(data, list) and data and isinstance(data[0], dict) else {}
    if first.get("exists"):
        result: Dict[str, Any] = {"status": "valid"}
        name = text(first.get("name"))
        if name:
            result["whatsappName"] = name
        return result
    return {"status": "invalid"}


async def _load_user_phones(db: AsyncSession, user_id: str, phone_ids: Sequence[str]) -> List[CompanyPhone]:
    result = await db.execute(
        select(CompanyPhone)
        .join(Company, Company.id == CompanyPhone.company_id)
        .where(Company.user_id == user_id, CompanyPhone.id.in_(list(phone_ids)))
    )
    return list(result.scalars().all())


async def validate_phones(
    db: AsyncSession,
    user_id: str,
    phone_ids: Sequence[str],
    *,
    delay_seconds: Optional[float] = None,
) -> Dict[str, Any]:
    """Check each phone in turn, pausing between upstream calls, and persist definite answers."""
    ids = [str(phone_id) for phone_id in phone_ids if str(phone_id or "").strip()]
    if not ids:
        raise ProviderError("validation_error", "Nenhum telefone para validar")

    # Fail on missing configuration before touching any phone.
    _evolution_url()
    transport.credential("EVOLUTION_API_KEY", "Evolution API não configurada")

    phones = await _load_user_phones(db, user_id, ids)
    if not phones:
        raise ProviderError("not_found", "Telefones não encontrados")

    pause = settings.PHONE_VALIDATION_DELAY_SECONDS if delay_seconds is None else delay_seconds
    results: List[Dict[str, Any]] = []
    for index, phone in enumerate(phones):
        if index and pause > 0:
            await asyncio.sleep(pause)
        outcome = await check_whatsapp(phone.phone_number)
        if outcome["status"] != "uncertain":
            phone.status = outcome["status"]
            phone.whatsapp_name = outcome.get("whatsappName")
            phone.validated_at = datetime.now(timezone.utc)
        results.append({"id": phone.id, **outcome})

    await db.commit()
    logger.info("Validated %s phones for user %s", len(results), user_id)
    return {
        "success": True,
        "results": results,
        "summary": {
            "total": len(results),
            **{status: sum(1 for item in results if item["status"] == status) for status in PHONE_STATUSES},
        },
    }
