"""Company lookup router."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import get_caller_context
from services import lookup
from services.audit_log import CallerContext

router = APIRouter()


class CnpjLookupRequest(BaseModel):
    cnpj: str


class CepLookupRequest(BaseModel):
    cep: str
    pagina: int = 1


class CnaePremiumRequest(BaseModel):
    cnae: str
    uf: Optional[str] = None
    municipio: Optional[str] = None
    pagina: int = 1


class CnaeSearchRequest(BaseModel):
    cnae: str
    uf: Optional[str] = None
    cidade: Optional[str] = None
    page: int = 1
    limit: int = 50


class FreeTextSearchRequest(BaseModel):
    query: str
    limit: int = 20


class ListaCnaeSearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    cnae: str
    municipio: Optional[int] = None
    quantidade: int = 50
    inicio: int = 0
    telefone_obrigatorio: bool = Field(default=False, alias="telefoneObrigatorio")
    email_obrigatorio: bool = Field(default=False, alias="emailObrigatorio")


class CompanyListingRequest(BaseModel):
    cnae: Optional[str] = None
    cidade: Optional[str] = None
    uf: Optional[str] = None
    page: int = 1


@router.post("/cnpj")
async def lookup_cnpj(
    request: CnpjLookupRequest,
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await lookup.lookup_by_tax_id(db, caller, request.cnpj)


@router.post("/cep")
async def lookup_cep(
    request: CepLookupRequest,
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await lookup.lookup_by_postal_code(db, caller, request.cep, request.pagina)


@router.post("/cnae-premium")
async def lookup_cnae_premium(
    request: CnaePremiumRequest,
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await lookup.lookup_premium_by_industry_code(
        db,
        caller,
        request.cnae,
        uf=request.uf,
        municipio=request.municipio,
        page=request.pagina,
    )


@router.post("/search-api")
async def search_by_cnae(
    request: CnaeSearchRequest,
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await lookup.lookup_by_industry_code(
        db,
        caller,
        request.cnae,
        uf=request.uf,
        cidade=request.cidade,
        page=request.page,
        limit=request.limit,
    )


@router.post("/free-text")
async def search_free_text(
    request: FreeTextSearchRequest,
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await lookup.search_free_text(db, caller, request.query, request.limit)


@router.post("/lista-cnae")
async def search_lista_cnae(
    request: ListaCnaeSearchRequest,
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await lookup.search_lista_cnae(
        db,
        caller,
        request.cnae,
        request.municipio,
        quantidade=request.quantidade,
        inicio=request.inicio,
        telefone_obrigatorio=request.telefone_obrigatorio,
        email_obrigatorio=request.email_obrigatorio,
    )


@router.post("/listing")
async def search_company_listing(
    request: CompanyListingRequest,
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await lookup.search_companies(
        db,
        caller,
        cnae=request.cnae,
        cidade=request.cidade,
        uf=request.uf,
        page=request.page,
    )


@router.get("/provider-account")
async def provider_account(
    caller: CallerContext = Depends(get_caller_context),
    db: AsyncSession = Depends(get_db),
):
    return await lookup.provider_account(db, caller)
