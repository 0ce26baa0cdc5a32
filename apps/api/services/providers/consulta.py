"""Catalog-backed industry search (custom consulta API). Rows are passed through raw."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from config import settings
from services.providers import transport
from services.providers.types import ProviderError

logger = logging.getLogger(__name__)

PROVIDER = "API de consulta"


def map_consulta_error(status_code: int, body: str) -> ProviderError:
    if status_code in (401, 403):
        return ProviderError("invalid_key", "Chave da API de consulta inválida.", upstream_status=status_code)
    if status_code == 404:
        return ProviderError("not_found", "Nenhuma empresa encontrada.", upstream_status=status_code)
    if status_code == 402:
        return ProviderError("insufficient_credits", "Créditos insuficientes na API de consulta.", upstream_status=402)
    if status_code == 429:
        return ProviderError("rate_limited", "Limite de requisições excedido. Aguarde um momento.", upstream_status=429)
    return ProviderError(
        "upstream_error",
        f"API returned {status_code}",
        upstream_status=status_code,
        details=body,
    )


class ConsultaClient:
    async def search_by_cnae(
        self,
        cnae: str,
        *,
        uf: Optional[str] = None,
        cidade: Optional[str] = None,
        page: int = 1,
        limit: int = 50,
    ) -> List[Any]:
        api_key = transport.credential("CUSTOM_API_KEY", "API key not configured")
        params: Dict[str, Any] = {"cnae": cnae, "page": page, "limit": limit}
        if uf:
            params["uf"] = uf
        if cidade:
            params["cidade"] = cidade

        url = f"{settings.CUSTOM_API_BASE_URL.rstrip('/')}/empresas"
        response = await transport.send(
            "GET",
            url,
            provider=PROVIDER,
            headers={"Authorization": api_key, "Content-Type": "application/json"},
            params=params,
        )
        if response.status_code >= 400:
            logger.warning("Consulta API error %s: %s", response.status_code, transport.diagnostic(response))
            raise map_consulta_error(response.status_code, transport.diagnostic(response))

        data = transport.parse_json_body(response)
        if isinstance(data, dict):
            rows = data.get("data") or data.get("empresas") or []
        else:
            rows = data if isinstance(data, list) else []
        logger.info("Consulta API returned %s rows for CNAE %s", len(rows), cnae)
        return list(rows)
