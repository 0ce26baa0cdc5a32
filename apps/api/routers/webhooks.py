"""Inbound payment provider notifications."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from services.payments import handle_webhook

router = APIRouter()


@router.post("/abacatepay")
async def abacatepay_webhook(
    request: Request,
    webhook_secret: Optional[str] = Query(default=None, alias="webhookSecret"),
    signature: Optional[str] = Header(default=None, alias="X-Webhook-Signature"),
    db: AsyncSession = Depends(get_db),
):
    """Authenticated by the shared secret query parameter, plus the body signature when sent."""
    raw_body = await request.body()
    return await handle_webhook(db, raw_body=raw_body, webhook_secret=webhook_secret, signature=signature)
