"""Lista CNAE: industry-code search and the CNAE / municipality catalogs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from config import settings
from services.providers import transport
from services.providers.types import CompanyRecord, ProviderError, first_of, text

logger = logging.getLogger(__name__)

PROVIDER = "Lista CNAE"


@dataclass(frozen=True)
class CatalogAttempt:
    method: str
    url: str
    headers: Dict[str, str]
    body: Optional[str] = None


def catalog_attempts(resource: str, token: str) -> List[CatalogAttempt]:
    """Auth/URL combinations the catalog endpoint has been observed to accept, in order."""
    base = settings.LISTA_CNAE_BASE_URL.rstrip("/")
    return [
        CatalogAttempt("GET", f"{base}/{resource}?token={token}", {}),
        CatalogAttempt("GET", f"{base}/{resource}", {"Authorization": token}),
        CatalogAttempt("GET", f"{base}/{resource}", {"Authorization": f"Bearer {token}"}),
        CatalogAttempt("POST", f"{base}/{resource}", {}, json.dumps({"token": token})),
        CatalogAttempt("GET", f"{base}/app/api/{resource}?token={token}", {}),
    ]


def parse_lista_cnae_row(item: Any, cnae: str) -> Optional[CompanyRecord]:
    if not isinstance(item, dict):
        return None
    return CompanyRecord(
        cnpj=first_of(item, "cnpj"),
        name=first_of(item, "razao_social", "nome_fantasia") or "Empresa sem nome",
        fantasy_name=first_of(item, "nome_fantasia"),
        cnae=cnae,
        cnae_description=first_of(item, "cnae_descricao", "atividade_principal"),
        city=first_of(item, "municipio", "cidade"),
        state=first_of(item, "uf", "estado"),
        phone1=first_of(item, "telefone_primario", "telefone1", "telefone"),
        phone2=first_of(item, "telefone_secundario", "telefone2"),
        email=first_of(item, "email"),
        address=first_of(item, "logradouro", "endereco"),
        number=first_of(item, "numero"),
        neighborhood=first_of(item, "bairro"),
        cep=first_of(item, "cep"),
        natureza_juridica=first_of(item, "natureza_juridica"),
        situacao=first_of(item, "situacao") or "ATIVA",
    )


def parse_cnae_catalog(data: Any) -> List[Dict[str, str]]:
    rows = data if isinstance(data, list) else (data.get("cnaes") if isinstance(data, dict) else None) or []
    catalog = []
    for item in rows:
        if not isinstance(item, dict):
            continue
        catalog.append(
            {
                "id": text(item.get("id") or item.get("codigo")),
                "descricao": first_of(item, "descricao", "nome"),
            }
        )
    return catalog


def parse_municipio_catalog(data: Any) -> List[Dict[str, Any]]:
    rows = data if isinstance(data, list) else (data.get("municipios") if isinstance(data, dict) else None) or []
    catalog = []
    for item in rows:
        if not isinstance(item, dict):
            continue
        try:
            municipio_id: Any = int(item.get("id") or item.get("codigo"))
        except (TypeError, ValueError):
            municipio_id = text(item.get("id") or item.get("codigo"))
        catalog.append(
            {
                "id": municipio_id,
                "nome": first_of(item, "nome", "municipio"),
                "uf": first_of(item, "uf", "estado"),
            }
        )
    return catalog


class ListaCnaeClient:
    """HTTP client for listacnae.com.br."""

    def _token(self) -> str:
        return transport.credential("LISTA_CNAE_TOKEN", "Token da Lista CNAE não configurado")

    async def search(
        self,
        cnae: str,
        municipio: int,
        *,
        quantidade: int = 50,
        inicio: int = 0,
        telefone_obrigatorio: bool = False,
        email_obrigatorio: bool = False,
    ) -> List[CompanyRecord]:
        token = self._token()
        params: Dict[str, Any] = {
            "inicio": inicio,
            "quantidade": quantidade,
            "cnaes": cnae,
            "municipios": municipio,
            "token": token,
        }
        if telefone_obrigatorio:
            params["telefone_obrigatorio"] = "true"
        if email_obrigatorio:
            params["email_obrigatorio"] = "true"

        url = f"{settings.LISTA_CNAE_BASE_URL.rstrip('/')}/buscar"
        logger.info("Searching Lista CNAE for CNAE %s municipality %s", cnae, municipio)
        response = await transport.send(
            "GET", url, provider=PROVIDER, headers={"Accept": "application/json"}, params=params
        )
        body = response.text

        if transport.looks_like_html(body):
            logger.error("Lista CNAE returned HTML instead of JSON")
            raise ProviderError(
                "upstream_error",
                "A API Lista CNAE não está disponível no momento.",
                upstream_status=response.status_code,
                http_status=503,
                extra={"companies": [], "total": 0},
            )

        if response.status_code >= 400:
            logger.warning("Lista CNAE API error %s: %s", response.status_code, transport.mask(body[:200], token))
            if response.status_code == 401:
                raise ProviderError(
                    "invalid_key",
                    "Token inválido ou expirado. Verifique o token da Lista CNAE.",
                    upstream_status=401,
                )
            if response.status_code == 402:
                raise ProviderError(
                    "insufficient_credits", "Créditos insuficientes na Lista CNAE.", upstream_status=402
                )
            if response.status_code == 429:
                raise ProviderError(
                    "rate_limited", "Limite de requisições excedido. Aguarde um momento.", upstream_status=429
                )
            if response.status_code == 404:
                raise ProviderError("not_found", "Nenhuma empresa encontrada.", upstream_status=404)
            raise ProviderError(
                "upstream_error",
                "Erro ao buscar empresas na API Lista CNAE",
                upstream_status=response.status_code,
                details=transport.mask(body, token),
            )

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise ProviderError(
                "upstream_error",
                "Resposta inválida da API Lista CNAE",
                http_status=502,
                details=body[:100],
                extra={"companies": [], "total": 0},
            ) from exc

        if isinstance(data, dict):
            rows = data.get("empresas") or data.get("data") or []
        else:
            rows = data if isinstance(data, list) else []
        companies = [parse_lista_cnae_row(item, cnae) for item in rows]
        return [company for company in companies if company is not None]

    async def fetch_catalog(self, resource: str) -> Any:
        """Try each known auth variant until one returns JSON."""
        token = self._token()
        last_error = ""
        for attempt in catalog_attempts(resource, token):
            logger.info("Trying catalog fetch %s %s", attempt.method, transport.mask(attempt.url, token)[:80])
            headers = {"Content-Type": "application/json", "Accept": "application/json", **attempt.headers}
            try:
                response = await transport.send(
                    attempt.method,
                    attempt.url,
                    provider=PROVIDER,
                    headers=headers,
                    content=attempt.body,
                )
            except ProviderError as exc:
                last_error = exc.message
                continue

            body = response.text
            if transport.looks_like_html(body):
                last_error = "API retornou HTML"
                continue
            if response.status_code >= 400:
                last_error = f"{response.status_code} - {transport.mask(body[:100], token)}"
                continue
            try:
                return json.loads(body)
            except ValueError:
                last_error = "JSON inválido"
                continue

        logger.error("All catalog attempts for %s failed. Last error: %s", resource, last_error)
        raise ProviderError(
            "upstream_error",
            "Erro ao buscar catálogo. A API Lista CNAE pode não estar disponível como endpoint REST.",
            details=last_error,
        )
