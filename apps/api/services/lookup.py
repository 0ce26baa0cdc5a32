"""Company lookup orchestration.

Every operation validates its input first, then passes the per-user rate gate
and the audit trail, and only then calls the upstream provider. A malformed
identifier therefore never costs a rate-limit slot or a network call.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from services.audit_log import CallerContext, record_audit
from services.providers import (
    CnpjaClient,
    CnpjwsClient,
    ConsultaClient,
    FirecrawlClient,
    ListaCnaeClient,
    ProviderError,
    digits_only,
    merge_map_results,
)
from services.rate_limiter import enforce_rate_limit

logger = logging.getLogger(__name__)

MAX_PAGE_LIMIT = 100
MAX_FREE_TEXT_LIMIT = 50
LISTA_CNAE_MIN_DIGITS = 5


def normalize_tax_id(value: Any) -> str:
    cnpj = digits_only(value)
    if len(cnpj) != 14:
        raise ProviderError("validation_error", "CNPJ inválido. Deve conter 14 dígitos.")
    return cnpj


def normalize_postal_code(value: Any) -> str:
    cep = digits_only(value)
    if len(cep) != 8:
        raise ProviderError("validation_error", "CEP inválido. Deve conter 8 dígitos.")
    return cep


def normalize_industry_code(value: Any, min_digits: int = 2) -> str:
    cnae = digits_only(value)
    if len(cnae) < min_digits:
        raise ProviderError("validation_error", f"CNAE inválido. Informe pelo menos {min_digits} dígitos.")
    return cnae


def _validate_page(page: int) -> int:
    if page < 1:
        raise ProviderError("validation_error", "Página inválida.")
    return page


def _validate_limit(limit: int, maximum: int) -> int:
    if limit < 1 or limit > maximum:
        raise ProviderError("validation_error", f"Limite deve estar entre 1 e {maximum}.")
    return limit


def _optional_upper(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned.upper() or None


def _optional(value: Optional[str]) -> Optional[str]:
    cleaned = (value or "").strip()
    return cleaned or None


async def _admit(
    db: AsyncSession,
    caller: CallerContext,
    *,
    endpoint: str,
    target: Optional[str],
    params: Dict[str, Any],
) -> None:
    if caller.enforce_rate_limits:
        await enforce_rate_limit(
            caller.user_id,
            endpoint,
            settings.RATE_LIMIT_SEARCH_MAX_REQUESTS,
            settings.RATE_LIMIT_SEARCH_WINDOW_MINUTES,
        )
    await record_audit(db, caller, action=f"lookup.{endpoint}", target=target, params=params)


async def lookup_by_tax_id(db: AsyncSession, caller: CallerContext, cnpj: Any) -> Dict[str, Any]:
    tax_id = normalize_tax_id(cnpj)
    await _admit(db, caller, endpoint="cnpj", target=tax_id, params={"cnpj": tax_id})

    company = await CnpjaClient().fetch_office(tax_id)
    if company is None:
        raise ProviderError("not_found", "CNPJ não encontrado na base da Receita Federal.")
    logger.info("CNPJ %s resolved for user %s", tax_id, caller.user_id)
    return {"success": True, "company": company.to_dict()}


async def lookup_by_postal_code(db: AsyncSession, caller: CallerContext, cep: Any, page: int = 1) -> Dict[str, Any]:
    postal_code = normalize_postal_code(cep)
    page = _validate_page(page)
    await _admit(db, caller, endpoint="cep", target=postal_code, params={"cep": postal_code, "pagina": page})

    companies = await CnpjwsClient().search_by_cep(postal_code, page)
    logger.info("CEP %s page %s returned %s companies", postal_code, page, len(companies))
    return {
        "success": True,
        "companies": [company.to_dict() for company in companies],
        "total": len(companies),
        "page": page,
    }


async def lookup_premium_by_industry_code(
    db: AsyncSession,
    caller: CallerContext,
    cnae: Any,
    *,
    uf: Optional[str] = None,
    municipio: Optional[str] = None,
    page: int = 1,
) -> Dict[str, Any]:
    code = normalize_industry_code(cnae)
    page = _validate_page(page)
    state = _optional_upper(uf)
    city = _optional(municipio)
    await _admit(
        db,
        caller,
        endpoint="cnae_premium",
        target=code,
        params={"cnae": code, "uf": state, "municipio": city, "pagina": page},
    )

    data = await CnpjwsClient().premium_search(code, uf=state, municipio=city, page=page)
    return {"success": True, "isPremium": True, "data": data}


async def lookup_by_industry_code(
    db: AsyncSession,
    caller: CallerContext,
    cnae: Any,
    *,
    uf: Optional[str] = None,
    cidade: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
) -> List[Any]:
    """Catalog-backed industry search; upstream rows are returned as-is."""
    code = normalize_industry_code(cnae)
    page = _validate_page(page)
    limit = _validate_limit(limit, MAX_PAGE_LIMIT)
    state = _optional_upper(uf)
    city = _optional(cidade)
    await _admit(
        db,
        caller,
        endpoint="cnae",
        target=code,
        params={"cnae": code, "uf": state, "cidade": city, "page": page, "limit": limit},
    )

    return await ConsultaClient().search_by_cnae(code, uf=state, cidade=city, page=page, limit=limit)


async def search_free_text(db: AsyncSession, caller: CallerContext, query: Any, limit: int = 20) -> Dict[str, Any]:
    search_query = str(query or "").strip()
    if not search_query:
        raise ProviderError("validation_error", "Termo de busca é obrigatório.")
    limit = _validate_limit(limit, MAX_FREE_TEXT_LIMIT)
    await _admit(db, caller, endpoint="free_text", target=search_query, params={"query": search_query, "limit": limit})

    results = await FirecrawlClient().search(search_query, limit)
    companies = merge_map_results(results)
    logger.info("Free-text search '%s' produced %s companies", search_query, len(companies))
    return {
        "success": True,
        "companies": [company.to_dict() for company in companies[:limit]],
        "total": len(companies),
        "query": search_query,
    }


async def search_lista_cnae(
    db: AsyncSession,
    caller: CallerContext,
    cnae: Any,
    municipio: Optional[int],
    *,
    quantidade: int = 50,
    inicio: int = 0,
    telefone_obrigatorio: bool = False,
    email_obrigatorio: bool = False,
) -> Dict[str, Any]:
    code = normalize_industry_code(cnae, min_digits=LISTA_CNAE_MIN_DIGITS)
    if not municipio or int(municipio) <= 0:
        raise ProviderError("validation_error", "Município é obrigatório.")
    quantidade = _validate_limit(quantidade, MAX_PAGE_LIMIT)
    if inicio < 0:
        raise ProviderError("validation_error", "Início inválido.")
    await _admit(
        db,
        caller,
        endpoint="lista_cnae",
        target=code,
        params={
            "cnae": code,
            "municipio": int(municipio),
            "quantidade": quantidade,
            "inicio": inicio,
            "telefoneObrigatorio": telefone_obrigatorio,
            "emailObrigatorio": email_obrigatorio,
        },
    )

    companies = await ListaCnaeClient().search(
        code,
        int(municipio),
        quantidade=quantidade,
        inicio=inicio,
        telefone_obrigatorio=telefone_obrigatorio,
        email_obrigatorio=email_obrigatorio,
    )
    return {
        "success": True,
        "companies": [company.to_dict() for company in companies],
        "total": len(companies),
    }


async def search_companies(
    db: AsyncSession,
    caller: CallerContext,
    *,
    cnae: Optional[str] = None,
    cidade: Optional[str] = None,
    uf: Optional[str] = None,
    page: int = 1,
) -> Dict[str, Any]:
    code = normalize_industry_code(cnae) if (cnae or "").strip() else None
    page = _validate_page(page)
    state = _optional_upper(uf)
    city = _optional(cidade)
    if not (code or state or city):
        raise ProviderError("validation_error", "Informe ao menos um filtro: CNAE, cidade ou UF.")
    await _admit(
        db,
        caller,
        endpoint="companies",
        target=code or city or state,
        params={"cnae": code, "cidade": city, "uf": state, "page": page},
    )

    listing = await CnpjwsClient().list_companies(cnae=code, cidade=city, uf=state, page=page)
    return {
        "success": True,
        "companies": [company.to_dict() for company in listing["companies"]],
        "total": listing["total"],
        "page": page,
        "hasMore": listing["hasMore"],
    }


async def provider_account(db: AsyncSession, caller: CallerContext) -> Dict[str, Any]:
    await record_audit(db, caller, action="lookup.provider_account")
    account = await CnpjwsClient().account_status()
    return {"success": True, "account": account}
