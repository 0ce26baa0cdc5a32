"""Tax-id lookup service A (CNPJá office endpoint)."""

from __future__ import annotations

import logging
from typing import Any, Optional

from config import settings
from services.providers import transport
from services.providers.types import CompanyRecord, ProviderError, join_phone, nested, text

logger = logging.getLogger(__name__)

PROVIDER = "CNPJá"


def map_cnpja_error(status_code: int, body: Any) -> ProviderError:
    """Translate a non-2xx CNPJá response to the canonical taxonomy."""
    payload = body if isinstance(body, dict) else {}
    upstream_message = text(payload.get("message"))

    if status_code == 401:
        return ProviderError(
            "invalid_key",
            "Chave de API inválida. Verifique sua chave da CNPJá.",
            upstream_status=status_code,
        )
    if status_code == 404:
        return ProviderError(
            "not_found",
            "CNPJ não encontrado na base da Receita Federal.",
            upstream_status=status_code,
        )
    if status_code == 429:
        if "not enough credits" in upstream_message:
            return ProviderError(
                "insufficient_credits",
                "Créditos insuficientes na CNPJá.",
                upstream_status=status_code,
                extra={"required": payload.get("required"), "remaining": payload.get("remaining")},
            )
        return ProviderError(
            "rate_limited",
            "Limite de requisições excedido. Aguarde um momento.",
            upstream_status=status_code,
        )
    if status_code == 402:
        return ProviderError("insufficient_credits", "Créditos insuficientes na CNPJá.", upstream_status=status_code)
    if status_code == 403:
        return ProviderError(
            "forbidden_plan",
            "Seu plano da CNPJá não permite esta consulta.",
            upstream_status=status_code,
            extra={"isPremium": False},
        )
    return ProviderError(
        "upstream_error",
        upstream_message or "Erro ao buscar empresa na API",
        upstream_status=status_code,
        details=str(body) if body else None,
    )


def parse_cnpja_office(data: Any, fallback_cnpj: str = "") -> Optional[CompanyRecord]:
    """Normalize a CNPJá office payload. Returns None when the payload is not a company."""
    if not isinstance(data, dict) or not data:
        return None
    if not (data.get("taxId") or data.get("company") or data.get("alias")):
        return None

    company = data.get("company") if isinstance(data.get("company"), dict) else {}
    address = data.get("address") if isinstance(data.get("address"), dict) else {}
    main_activity = data.get("mainActivity") if isinstance(data.get("mainActivity"), dict) else {}
    phones = data.get("phones") if isinstance(data.get("phones"), list) else []
    emails = data.get("emails") if isinstance(data.get("emails"), list) else []

    def _phone(index: int) -> str:
        if index >= len(phones) or not isinstance(phones[index], dict):
            return ""
        return join_phone(phones[index].get("area"), phones[index].get("number"))

    first_email = emails[0] if emails and isinstance(emails[0], dict) else {}
    equity = company.get("equity")

    return CompanyRecord(
        cnpj=text(data.get("taxId")) or fallback_cnpj,
        name=text(company.get("name")) or text(data.get("alias")) or "Empresa sem nome",
        fantasy_name=text(data.get("alias")),
        cnae=text(main_activity.get("id")),
        cnae_description=text(main_activity.get("text")),
        city=text(address.get("city")),
        state=text(address.get("state")),
        phone1=_phone(0),
        phone2=_phone(1),
        email=text(first_email.get("address")),
        address=text(address.get("street")),
        number=text(address.get("number")),
        neighborhood=text(address.get("district")),
        cep=text(address.get("zip")),
        capital_social=text(equity) if equity is not None else "",
        natureza_juridica=text(nested(company, "nature", "text")),
        porte=text(nested(company, "size", "text")),
        situacao=text(nested(data, "status", "text")),
        data_abertura=text(data.get("founded")),
        simples="Sim" if nested(company, "simples", "optant") else "Não",
        mei="Sim" if nested(company, "simei", "optant") else "Não",
    )


class CnpjaClient:
    """HTTP client for the CNPJá office endpoint."""

    async def fetch_office(self, cnpj: str) -> Optional[CompanyRecord]:
        api_key = transport.credential("CNPJA_API_KEY", "API key da CNPJá não configurada")
        url = f"{settings.CNPJA_BASE_URL.rstrip('/')}/office/{cnpj}"
        logger.info("Calling CNPJá office lookup for %s", cnpj)

        response = await transport.send(
            "GET",
            url,
            provider=PROVIDER,
            headers={"Authorization": api_key, "Accept": "application/json"},
        )
        body = transport.parse_json_body(response)
        if response.status_code >= 400:
            logger.warning("CNPJá API error %s: %s", response.status_code, transport.diagnostic(response))
            raise map_cnpja_error(response.status_code, body)

        return parse_cnpja_office(body, fallback_cnpj=cnpj)

