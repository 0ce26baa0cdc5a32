"""Phone validation router."""

from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db
from routers.auth_scope import AuthContext, get_auth_context
from services.phone_validation import validate_phones

router = APIRouter()


class PhoneValidationRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_ids: List[str] = Field(default_factory=list, alias="phoneIds")


@router.post("/validate")
async def validate_company_phones(
    request: PhoneValidationRequest,
    auth: AuthContext = Depends(get_auth_context),
    db: AsyncSession = Depends(get_db),
):
    return await validate_phones(db, auth.user_id, request.phone_ids)
