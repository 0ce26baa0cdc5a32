"""Company registry provider contracts."""

from __future__ import annotations

import re
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Literal, Optional


ErrorCode = Literal[
    "validation_error",
    "invalid_key",
    "unauthenticated",
    "not_found",
    "forbidden_plan",
    "insufficient_credits",
    "rate_limited",
    "upstream_error",
    "already_processed",
]

HTTP_STATUS_BY_CODE: Dict[str, int] = {
    "validation_error": 400,
    "invalid_key": 401,
    "unauthenticated": 401,
    "insufficient_credits": 402,
    "forbidden_plan": 403,
    "not_found": 404,
    "rate_limited": 429,
    "upstream_error": 500,
    "already_processed": 200,
}

MAX_DIAGNOSTIC_CHARS = 200


class ProviderError(RuntimeError):
    """Canonical lookup failure raised by adapters and the orchestrator."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        *,
        upstream_status: Optional[int] = None,
        http_status: Optional[int] = None,
        details: Optional[str] = None,
        extra: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.upstream_status = upstream_status
        self.http_status = http_status or HTTP_STATUS_BY_CODE.get(code, 500)
        self.details = truncate(details) if details else None
        self.extra = dict(extra or {})

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        payload.update(self.extra)
        return payload


def truncate(value: Any, limit: int = MAX_DIAGNOSTIC_CHARS) -> str:
    return str(value or "")[:limit]


def digits_only(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def text(value: Any) -> str:
    """Coerce an upstream scalar to a display string; absent values become ''."""
    if value is None or isinstance(value, (dict, list)):
        return ""
    return str(value).strip()


def nested(source: Any, *path: str) -> Any:
    """Walk nested dicts, returning None as soon as a level is missing."""
    current = source
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_of(source: Any, *keys: str) -> str:
    """Return the first non-empty field among renamed upstream variants."""
    if not isinstance(source, dict):
        return ""
    for key in keys:
        value = text(source.get(key))
        if value:
            return value
    return ""


def join_phone(area: Any, number: Any) -> str:
    """Area code + subscriber number as raw digits, or '' when either part is missing."""
    area_digits = digits_only(area)
    number_digits = digits_only(number)
    if area_digits and number_digits:
        return f"{area_digits}{number_digits}"
    return ""


def normalize_record_tax_id(value: Any) -> str:
    cleaned = digits_only(value)
    return cleaned if len(cleaned) == 14 else ""


@dataclass
class CompanyRecord:
    """Provider-independent company shape returned to callers."""

    cnpj: str = ""
    name: str = ""
    fantasy_name: str = ""
    cnae: str = ""
    cnae_description: str = ""
    city: str = ""
    state: str = ""
    phone1: str = ""
    phone2: str = ""
    email: str = ""
    address: str = ""
    number: str = ""
    neighborhood: str = ""
    cep: str = ""
    capital_social: Optional[str] = None
    natureza_juridica: Optional[str] = None
    porte: Optional[str] = None
    situacao: Optional[str] = None
    data_abertura: Optional[str] = None
    simples: Optional[str] = None
    mei: Optional[str] = None
    website: Optional[str] = None
    rating: Optional[str] = None
    reviews: Optional[str] = None
    source: Optional[str] = None
    extras: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.cnpj = normalize_record_tax_id(self.cnpj)
        self.cnae = digits_only(self.cnae)
        self.cep = digits_only(self.cep)
        self.phone1 = digits_only(self.phone1)
        self.phone2 = digits_only(self.phone2)

    def to_dict(self) -> Dict[str, Any]:
        raw = asdict(self)
        extras = raw.pop("extras") or {}
        payload = {_CAMEL_KEYS.get(key, key): value for key, value in raw.items() if value is not None}
        payload.update(extras)
        return payload


_CAMEL_KEYS = {
    "fantasy_name": "fantasyName",
    "cnae_description": "cnaeDescription",
    "capital_social": "capitalSocial",
    "natureza_juridica": "naturezaJuridica",
    "data_abertura": "dataAbertura",
}
