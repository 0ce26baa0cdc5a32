"""Public company registry provider utilities."""

from services.providers.cnpja import CnpjaClient, parse_cnpja_office
from services.providers.cnpjws import CnpjwsClient, parse_cnpjws_establishment, parse_cnpjws_listing_row
from services.providers.consulta import ConsultaClient
from services.providers.firecrawl import FirecrawlClient, merge_map_results
from services.providers.listacnae import ListaCnaeClient, parse_cnae_catalog, parse_municipio_catalog
from services.providers.types import CompanyRecord, ErrorCode, ProviderError, digits_only

__all__ = [
    "CnpjaClient",
    "CnpjwsClient",
    "CompanyRecord",
    "ConsultaClient",
    "ErrorCode",
    "FirecrawlClient",
    "ListaCnaeClient",
    "ProviderError",
    "digits_only",
    "merge_map_results",
    "parse_cnae_catalog",
    "parse_cnpja_office",
    "parse_cnpjws_establishment",
    "parse_cnpjws_listing_row",
    "parse_municipio_catalog",
]
