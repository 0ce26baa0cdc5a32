"""Shared httpx plumbing for upstream providers."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

import httpx

from config import require_setting, settings
from services.providers.types import ProviderError, truncate

logger = logging.getLogger(__name__)


def build_client() -> httpx.AsyncClient:
    """Return a short-lived client with the configured upstream timeout."""
    return httpx.AsyncClient(timeout=settings.UPSTREAM_TIMEOUT_SECONDS, follow_redirects=True)


def credential(name: str, message: str) -> str:
    """Resolve a provider credential, failing before any network call."""
    try:
        return require_setting(name, message)
    except ValueError:
        logger.error("%s not configured", name)
        raise ProviderError("upstream_error", message, http_status=500)


def mask(url: str, *secrets: str) -> str:
    masked = url
    for secret in secrets:
        if secret:
            masked = masked.replace(secret, "***TOKEN***")
    return masked


async def send(
    method: str,
    url: str,
    *,
    provider: str,
    headers: Optional[Dict[str, str]] = None,
    params: Optional[Dict[str, Any]] = None,
    json_body: Optional[Any] = None,
    content: Optional[str] = None,
) -> httpx.Response:
    """Perform one upstream call. Timeouts and transport failures become upstream_error."""
    try:
        async with build_client() as client:
            return await client.request(
                method,
                url,
                headers=headers,
                params=params,
                json=json_body,
                content=content,
            )
    except httpx.TimeoutException as exc:
        logger.warning("%s request timed out: %s", provider, exc)
        raise ProviderError(
            "upstream_error",
            f"Tempo de resposta esgotado ao consultar {provider}.",
        ) from exc
    except httpx.HTTPError as exc:
        logger.warning("%s request failed: %s", provider, exc)
        raise ProviderError(
            "upstream_error",
            f"Falha de comunicação com {provider}.",
            details=str(exc),
        ) from exc


def looks_like_html(body: str) -> bool:
    return body.lstrip().startswith("<")


def parse_json_body(response: httpx.Response) -> Any:
    """Decode a JSON body, returning {} for empty or unparsable payloads."""
    try:
        return response.json()
    except (json.JSONDecodeError, ValueError):
        return {}


def diagnostic(response: httpx.Response) -> str:
    return truncate(response.text)
