"""Process-lifetime caches for the CNAE and municipality catalogs.

Each catalog sits in one module-level slot that is replaced as a whole. There
is no lock: concurrent cold requests may each fetch upstream, and whichever
finishes last wins the slot.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from services.providers import ListaCnaeClient, parse_cnae_catalog, parse_municipio_catalog

logger = logging.getLogger(__name__)

_cnae_cache: Optional[List[Dict[str, str]]] = None
_municipio_cache: Optional[List[Dict[str, Any]]] = None


async def get_cnae_catalog() -> List[Dict[str, str]]:
    global _cnae_cache
    cached = _cnae_cache
    if cached is not None:
        return list(cached)

    catalog = parse_cnae_catalog(await ListaCnaeClient().fetch_catalog("cnaes"))
    logger.info("Loaded %s CNAEs from upstream", len(catalog))
    if catalog:
        _cnae_cache = catalog
    return list(catalog)


async def get_municipio_catalog() -> List[Dict[str, Any]]:
    global _municipio_cache
    cached = _municipio_cache
    if cached is not None:
        return list(cached)

    catalog = parse_municipio_catalog(await ListaCnaeClient().fetch_catalog("municipios"))
    logger.info("Loaded %s municipalities from upstream", len(catalog))
    if catalog:
        _municipio_cache = catalog
    return list(catalog)


def clear_catalog_cache() -> None:
    global _cnae_cache, _municipio_cache
    _cnae_cache = None
    _municipio_cache = None
