"""Free-text map search over Firecrawl web search results.

Results are loosely structured text, so records are recovered heuristically in
two passes: one record per search hit (title, description, url) and then any
business listings found inside the scraped page markdown.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from config import settings
from services.providers import transport
from services.providers.types import CompanyRecord, ProviderError, digits_only, text

logger = logging.getLogger(__name__)

PROVIDER = "Firecrawl"

SEARCH_QUERY_SUFFIXES = ("telefone contato endereço", "site oficial")

GENERIC_TERMS = (
    "results",
    "map tools",
    "map type",
    "google maps",
    "sign in",
    "get the most out",
    "pesquisa",
    "busca",
    "home",
    "menu",
    "collapse",
    "expand",
    "rating",
    "hours",
    "filters",
)

PHONE_PATTERNS = (
    re.compile(r"\(?\d{2}\)?\s*\d{4,5}[-.\s]?\d{4}"),
    re.compile(r"\+55\s*\d{2}\s*\d{4,5}[-.\s]?\d{4}"),
)

ADDRESS_PATTERNS = (
    re.compile(r"(?:Endereço|Localização|End\.?):\s*([^\n]+)", re.IGNORECASE),
    re.compile(
        r"(?:R\.|Rua|Av\.|Avenida|Al\.|Alameda|Pça\.|Praça|Travessa|Tv\.)[^,\n]+"
        r"(?:,\s*\d+)?(?:\s*-\s*[^,\n]+)?(?:,\s*[^,\n]+)?",
        re.IGNORECASE,
    ),
)

RATING_PATTERN = re.compile(r"(\d[,.]\d)\s*(?:estrelas?|⭐|/\s*5)", re.IGNORECASE)
REVIEWS_PATTERN = re.compile(r"\((\d+(?:\.\d+)?[kK]?)\s*(?:avaliações?|avaliação|reviews?|opiniões?|opinião)\)", re.IGNORECASE)

LISTING_HEADING = re.compile(r"^\s*(?:#{1,4}\s+(?P<heading>.+?)|\*\*(?P<bold>[^*]+)\*\*)\s*$")
MARKDOWN_LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
EXCLUDED_WEBSITE_HOSTS = ("google.com", "facebook.com")


def is_generic_result(name: str) -> bool:
    lower_name = name.lower()
    return any(term in lower_name for term in GENERIC_TERMS)


def clean_title(title: Any) -> str:
    name = text(title)
    name = re.sub(r" - Google Maps$", "", name)
    name = re.sub(r" \| .*$", "", name)
    name = re.sub(r" - .*$", "", name)
    name = re.sub(r" · .*$", "", name)
    name = name.strip()
    if len(name) > 80:
        name = re.split(r"[,\-|]", name)[0].strip()
    return name


def extract_phone(content: str) -> str:
    for pattern in PHONE_PATTERNS:
        match = pattern.search(content)
        if match:
            phone = digits_only(match.group(0))
            if phone.startswith("55") and len(phone) > 11:
                phone = phone[2:]
            return phone
    return ""


def extract_address(content: str) -> str:
    for pattern in ADDRESS_PATTERNS:
        match = pattern.search(content)
        if match:
            value = match.group(1) if match.groups() else match.group(0)
            return value.strip()[:200]
    return ""


def extract_rating(content: str) -> str:
    match = RATING_PATTERN.search(content)
    return match.group(1) if match else ""


def extract_reviews(content: str) -> str:
    match = REVIEWS_PATTERN.search(content)
    return match.group(1) if match else ""


def website_from_url(url: str) -> str:
    if not url or any(host in url for host in EXCLUDED_WEBSITE_HOSTS):
        return ""
    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        return ""
    return f"{parsed.scheme}://{parsed.netloc}"


def parse_search_result(result: Any) -> Optional[CompanyRecord]:
    """Structured pass: one partial record per search hit."""
    if not isinstance(result, dict):
        return None
    name = clean_title(result.get("title"))
    if not name or is_generic_result(name):
        return None

    url = text(result.get("url"))
    content = text(result.get("markdown")) or text(result.get("description"))
    return CompanyRecord(
        name=name,
        phone1=extract_phone(content),
        address=extract_address(content),
        website=website_from_url(url),
        rating=extract_rating(content),
        reviews=extract_reviews(content),
        source=url,
    )


def _listing_name(line: str) -> str:
    match = LISTING_HEADING.match(line)
    if not match:
        return ""
    raw = match.group("heading") or match.group("bold") or ""
    raw = MARKDOWN_LINK.sub(r"\1", raw)
    return raw.strip(" *#:-").strip()


def extract_listings(markdown: Any, source: str = "") -> List[CompanyRecord]:
    """Scraped-page pass: headed blocks that carry a phone or a street address."""
    content = text(markdown)
    if not content:
        return []

    blocks: List[Dict[str, Any]] = []
    current: Optional[Dict[str, Any]] = None
    for line in content.splitlines():
        name = _listing_name(line)
        if name:
            current = {"name": name, "lines": []}
            blocks.append(current)
        elif current is not None:
            current["lines"].append(line)

    listings: List[CompanyRecord] = []
    for block in blocks:
        name = block["name"]
        if len(name) > 80 or is_generic_result(name):
            continue
        body = "\n".join(block["lines"])
        phone = extract_phone(body)
        address = extract_address(body)
        if not phone and not address:
            continue
        listings.append(
            CompanyRecord(
                name=name,
                phone1=phone,
                address=address,
                website="",
                rating=extract_rating(body),
                reviews=extract_reviews(body),
                source=source,
            )
        )
    return listings


def merge_map_results(results: Iterable[Any]) -> List[CompanyRecord]:
    """Run both extraction passes and keep the first record for each business name."""
    hits = [result for result in results if isinstance(result, dict)]
    companies: List[CompanyRecord] = []
    seen = set()

    def _add(record: Optional[CompanyRecord]) -> None:
        if record is None or not record.name:
            return
        key = record.name.strip().casefold()
        if key in seen:
            return
        seen.add(key)
        companies.append(record)

    for hit in hits:
        _add(parse_search_result(hit))
    for hit in hits:
        for listing in extract_listings(hit.get("markdown"), source=text(hit.get("url"))):
            _add(listing)
    return companies


class FirecrawlClient:
    """HTTP client for the Firecrawl search endpoint."""

    async def search(self, query: str, limit: int) -> List[Dict[str, Any]]:
        """Run every query variant; a failing variant is skipped unless all of them fail."""
        api_key = transport.credential("FIRECRAWL_API_KEY", "Firecrawl não configurado")
        url = f"{settings.FIRECRAWL_BASE_URL.rstrip('/')}/v1/search"
        per_query_limit = max(int(math.ceil(limit / 2)), 1)

        results: List[Dict[str, Any]] = []
        failures: List[ProviderError] = []
        for suffix in SEARCH_QUERY_SUFFIXES:
            search_query = f"{query} {suffix}"
            logger.info("Firecrawl search: %s", search_query)
            try:
                response = await transport.send(
                    "POST",
                    url,
                    provider=PROVIDER,
                    headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
                    json_body={
                        "query": search_query,
                        "limit": per_query_limit,
                        "lang": "pt",
                        "country": "BR",
                        "scrapeOptions": {"formats": ["markdown"]},
                    },
                )
            except ProviderError as exc:
                failures.append(exc)
                continue

            if response.status_code >= 400:
                logger.warning("Firecrawl search error %s: %s", response.status_code, transport.diagnostic(response))
                failures.append(_map_firecrawl_error(response.status_code, transport.diagnostic(response)))
                continue

            payload = transport.parse_json_body(response)
            data = payload.get("data") if isinstance(payload, dict) else None
            hits = [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []
            logger.info("Found %s results for: %s", len(hits), search_query)
            results.extend(hits)

        if failures and len(failures) == len(SEARCH_QUERY_SUFFIXES):
            raise failures[-1]
        return results


def _map_firecrawl_error(status_code: int, body: str) -> ProviderError:
    if status_code == 401:
        return ProviderError("invalid_key", "Chave do Firecrawl inválida.", upstream_status=401)
    if status_code == 402:
        return ProviderError("insufficient_credits", "Créditos insuficientes no Firecrawl.", upstream_status=402)
    if status_code == 429:
        return ProviderError("rate_limited", "Limite de requisições excedido. Aguarde um momento.", upstream_status=429)
    return ProviderError("upstream_error", "Erro na busca Firecrawl", upstream_status=status_code, details=body)
