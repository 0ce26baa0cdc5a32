"""Billing and credits router."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from routers.rate_limit import rate_limit
from services.credits import consume, get_balance, get_credit_summary, list_active_packages, serialize_package
from services.payments import create_charge, poll_status
from services.profiles import ensure_profile

router = APIRouter()
logger = logging.getLogger(__name__)


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    package_id: str = Field(alias="packageId", min_length=1)


class PixStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pix_id: str = Field(alias="pixId", min_length=1)


class ConsumeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: int = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)
    reference_id: Optional[str] = Field(default=None, alias="referenceId")


@router.get("/credits")
async def credits_summary(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await get_credit_summary(auth.user_id, db)


@router.get("/packages")
async def credit_packages(
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    packages = await list_active_packages(db)
    return {"packages": [serialize_package(package) for package in packages]}


@router.post("/consume")
async def consume_credits(
    request: ConsumeRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    consumed = await consume(auth.user_id, request.amount, request.description, db, request.reference_id)
    if not consumed:
        raise HTTPException(status_code=402, detail="Créditos insuficientes")
    return {"success": True, "balance": await get_balance(auth.user_id, db)}


@router.post("/checkout")
async def create_checkout(
    request: CheckoutRequest,
    _rate_limit: None = Depends(
        rate_limit(
            "billing_checkout",
            limit=settings.RATE_LIMIT_CHECKOUT_MAX_REQUESTS,
            window_minutes=settings.RATE_LIMIT_CHECKOUT_WINDOW_MINUTES,
        )
    ),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    await ensure_profile(db, auth.user_id, auth.email)
    return await create_charge(db, user_id=auth.user_id, package_id=request.package_id, email=auth.email)


@router.post("/pix-status")
async def pix_status(
    request: PixStatusRequest,
    _rate_limit: None = Depends(
        rate_limit(
            "billing_pix_status",
            limit=settings.RATE_LIMIT_PIX_STATUS_MAX_REQUESTS,
            window_minutes=settings.RATE_LIMIT_PIX_STATUS_WINDOW_MINUTES,
        )
    ),
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await poll_status(db, user_id=auth.user_id, pix_id=request.pix_id)
