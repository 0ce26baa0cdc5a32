"""AbacatePay PIX QR code client."""

from __future__ import annotations

import logging
from typing import Any, Dict

from config import settings
from services.providers import transport
from services.providers.types import ProviderError, text

logger = logging.getLogger(__name__)

PROVIDER = "AbacatePay"


class AbacatePayClient:
    def _headers(self) -> Dict[str, str]:
        api_key = transport.credential("ABACATEPAY_API_KEY", "Gateway de pagamento não configurado")
        return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

    def _url(self, path: str) -> str:
        return f"{settings.ABACATEPAY_BASE_URL.rstrip('/')}{path}"

    def _unwrap(self, response, failure_message: str) -> Dict[str, Any]:
        body = transport.parse_json_body(response)
        payload = body if isinstance(body, dict) else {}
        upstream_error = payload.get("error")
        if response.status_code >= 400 or upstream_error:
            logger.warning("AbacatePay error %s: %s", response.status_code, transport.diagnostic(response))
            raise ProviderError(
                "upstream_error",
                failure_message,
                upstream_status=response.status_code,
                details=text(upstream_error) or transport.diagnostic(response),
            )
        data = payload.get("data")
        return data if isinstance(data, dict) else {}

    async def create_pix_charge(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = self._headers()
        response = await transport.send(
            "POST",
            self._url("/v1/pixQrCode/create"),
            provider=PROVIDER,
            headers=headers,
            json_body=payload,
        )
        return self._unwrap(response, "Erro ao criar cobrança PIX")

    async def check_pix_charge(self, pix_id: str) -> Dict[str, Any]:
        headers = self._headers()
        response = await transport.send(
            "GET",
            self._url("/v1/pixQrCode/check"),
            provider=PROVIDER,
            headers=headers,
            params={"id": pix_id},
        )
        return self._unwrap(response, "Erro ao verificar status do PIX")
