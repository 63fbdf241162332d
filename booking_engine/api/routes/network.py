"""
Authorized Network Routes (read-only)
"""
from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.db.database import get_db
from booking_engine.domain.services.authorization_index import AuthorizationIndex

router = APIRouter()


class RecipientResponse(BaseModel):
    recipient_id: int
    recipient_name: str
    address: str | None

    class Config:
        from_attributes = True


@router.get(
    "/{brand_id}/recipients",
    response_model=List[RecipientResponse],
    summary="Recipients a brand may ship to",
)
async def list_recipients(
    brand_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await AuthorizationIndex(db).authorized_recipients(brand_id)
