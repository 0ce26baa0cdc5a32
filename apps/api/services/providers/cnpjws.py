"""Tax-id lookup service B (CNPJ.ws commercial API).

Covers the postal-code bulk lookup, the plan-gated premium search by industry
code, the registry listing endpoint and the account consumption report.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from config import settings
from services.providers import transport
from services.providers.types import CompanyRecord, ProviderError, first_of, join_phone, nested, text

logger = logging.getLogger(__name__)

PROVIDER = "CNPJ.ws"
LISTING_PAGE_SIZE = 50


def map_cnpjws_error(status_code: int, body: str, *, not_found_message: str) -> ProviderError:
    if status_code == 401:
        return ProviderError(
            "invalid_key",
            "API key inválida. Verifique sua chave do CNPJ.ws",
            upstream_status=status_code,
        )
    if status_code == 403:
        # Authenticated, but the key's plan does not cover this endpoint.
        return ProviderError(
            "forbidden_plan",
            "Acesso negado - Plano Premium necessário",
            upstream_status=status_code,
            extra={
                "isPremium": False,
                "details": "Sua chave CNPJ.ws é do plano Basic. Esta funcionalidade requer o Plano Premium.",
            },
        )
    if status_code == 404:
        return ProviderError("not_found", not_found_message, upstream_status=status_code)
    if status_code == 402:
        return ProviderError(
            "insufficient_credits",
            "Créditos insuficientes na API CNPJ.ws",
            upstream_status=status_code,
        )
    if status_code == 429:
        return ProviderError(
            "rate_limited",
            "Limite de requisições excedido. Aguarde um momento.",
            upstream_status=status_code,
        )
    return ProviderError(
        "upstream_error",
        "Erro ao buscar empresas na API",
        upstream_status=status_code,
        details=body,
    )


def parse_cnpjws_establishment(item: Any, fallback_cep: str = "") -> Optional[CompanyRecord]:
    """Normalize one row of the postal-code search (establishment nested or flat)."""
    if not isinstance(item, dict):
        return None
    establishment = item.get("estabelecimento") if isinstance(item.get("estabelecimento"), dict) else item
    activity = (
        establishment.get("atividade_principal")
        if isinstance(establishment.get("atividade_principal"), dict)
        else {}
    )

    return CompanyRecord(
        cnpj=first_of(establishment, "cnpj") or first_of(item, "cnpj"),
        name=first_of(item, "razao_social") or first_of(establishment, "razao_social") or "Empresa sem nome",
        fantasy_name=first_of(establishment, "nome_fantasia"),
        cnae=first_of(activity, "id", "subclasse"),
        cnae_description=first_of(activity, "descricao"),
        city=text(nested(establishment, "cidade", "nome")) or first_of(establishment, "municipio"),
        state=text(nested(establishment, "estado", "sigla")) or first_of(establishment, "uf"),
        phone1=join_phone(establishment.get("ddd1"), establishment.get("telefone1")),
        phone2=join_phone(establishment.get("ddd2"), establishment.get("telefone2")),
        email=first_of(establishment, "email"),
        address=first_of(establishment, "logradouro"),
        number=first_of(establishment, "numero"),
        neighborhood=first_of(establishment, "bairro"),
        cep=first_of(establishment, "cep") or fallback_cep,
    )


def parse_cnpjws_listing_row(row: Any) -> Optional[CompanyRecord]:
    """Normalize one row of the flat registry listing endpoint."""
    if not isinstance(row, dict):
        return None
    return CompanyRecord(
        cnpj=first_of(row, "cnpj"),
        name=first_of(row, "razao_social", "nome_fantasia") or "Empresa sem nome",
        fantasy_name=first_of(row, "nome_fantasia"),
        cnae=first_of(row, "cnae_fiscal"),
        cnae_description=first_of(row, "cnae_fiscal_descricao"),
        city=first_of(row, "municipio"),
        state=first_of(row, "uf"),
        phone1=first_of(row, "ddd_telefone_1"),
        phone2=first_of(row, "ddd_telefone_2"),
        email=first_of(row, "email"),
        address=first_of(row, "logradouro"),
        number=first_of(row, "numero"),
        neighborhood=first_of(row, "bairro"),
        cep=first_of(row, "cep"),
    )


class CnpjwsClient:
    """HTTP client for the CNPJ.ws commercial endpoints."""

    def _headers(self) -> Dict[str, str]:
        api_key = transport.credential("CNPJWS_API_KEY", "API key do CNPJ.ws não configurada")
        return {"x_api_token": api_key, "Accept": "application/json"}

    def _url(self, path: str) -> str:
        return f"{settings.CNPJWS_BASE_URL.rstrip('/')}{path}"

    async def _get(self, path: str, params: Dict[str, Any], *, not_found_message: str) -> Any:
        headers = self._headers()
        response = await transport.send("GET", self._url(path), provider=PROVIDER, headers=headers, params=params)
        if response.status_code >= 400:
            logger.warning("CNPJ.ws API error %s on %s: %s", response.status_code, path, transport.diagnostic(response))
            raise map_cnpjws_error(
                response.status_code,
                transport.diagnostic(response),
                not_found_message=not_found_message,
            )
        if transport.looks_like_html(response.text):
            raise ProviderError(
                "upstream_error",
                "Resposta inválida da API CNPJ.ws",
                http_status=502,
                details=transport.diagnostic(response),
            )
        return transport.parse_json_body(response)

    async def search_by_cep(self, cep: str, page: int) -> List[CompanyRecord]:
        logger.info("Searching CNPJ.ws companies by CEP %s page %s", cep, page)
        data = await self._get(
            f"/cep/{cep}",
            {"pagina": page},
            not_found_message="Nenhuma empresa encontrada neste CEP",
        )
        rows = data if isinstance(data, list) else []
        companies = [parse_cnpjws_establishment(row, fallback_cep=cep) for row in rows]
        return [company for company in companies if company is not None]

    async def premium_search(
        self,
        cnae: str,
        *,
        uf: Optional[str] = None,
        municipio: Optional[str] = None,
        page: int = 1,
    ) -> Any:
        params: Dict[str, Any] = {"atividade_principal_id": cnae, "pagina": page}
        if uf:
            params["estabelecimento_uf"] = uf
        if municipio:
            params["estabelecimento_municipio"] = municipio
        logger.info("Searching CNPJ.ws premium listing for CNAE %s", cnae)
        return await self._get("/pesquisa", params, not_found_message="Nenhuma empresa encontrada para este CNAE")

    async def list_companies(
        self,
        *,
        cnae: Optional[str] = None,
        cidade: Optional[str] = None,
        uf: Optional[str] = None,
        page: int = 1,
    ) -> Dict[str, Any]:
        params: Dict[str, Any] = {}
        if cnae:
            params["cnae"] = cnae
        if cidade:
            params["municipio"] = cidade
        if uf:
            params["uf"] = uf
        params.update({"page": page, "limit": LISTING_PAGE_SIZE, "situacao": "ATIVA"})

        data = await self._get("/cnpj", params, not_found_message="Nenhuma empresa encontrada")
        payload = data if isinstance(data, dict) else {}
        rows = payload.get("records") or payload.get("data") or []
        companies = [parse_cnpjws_listing_row(row) for row in rows if isinstance(row, dict)]
        companies = [company for company in companies if company is not None]
        return {
            "companies": companies,
            "total": payload.get("total") or payload.get("count") or len(companies),
            "hasMore": len(companies) == LISTING_PAGE_SIZE,
        }

    async def account_status(self) -> Any:
        return await self._get("/consumo", {}, not_found_message="Conta não encontrada")
