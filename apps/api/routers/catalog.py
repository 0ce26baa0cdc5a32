"""Reference catalogs: CNAE codes and municipalities."""

from fastapi import APIRouter, Depends

from routers.auth_scope import AuthContext, get_auth_context
from services.cnae_catalog import get_cnae_catalog, get_municipio_catalog

router = APIRouter()


@router.get("/cnaes")
async def list_cnaes(auth: AuthContext = Depends(get_auth_context)):
    return {"success": True, "cnaes": await get_cnae_catalog()}


@router.get("/municipios")
async def list_municipios(auth: AuthContext = Depends(get_auth_context)):
    return {"success": True, "municipios": await get_municipio_catalog()}
