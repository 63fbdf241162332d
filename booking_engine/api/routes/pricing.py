"""
Courier Pricing Admin Routes
"""
from decimal import Decimal

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.dependencies.admin_auth import require_admin_api_key
from booking_engine.core.exceptions import NotFoundException
from booking_engine.db.database import get_db
from booking_engine.domain.services.pricing_resolver import PricingAdminService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class PricingResponse(BaseModel):
    brand_id: int
    rate_per_box: Decimal
    is_active: bool

    class Config:
        from_attributes = True


class PricingUpdate(BaseModel):
    rate_per_box: Decimal = Field(gt=0, description="Minor currency units per box")


@router.get("/{brand_id}", response_model=PricingResponse, summary="Get a brand's courier rate")
async def get_pricing(
    brand_id: int,
    db: AsyncSession = Depends(get_db),
):
    pricing = await PricingAdminService(db).get_brand_pricing(brand_id)
    if pricing is None:
        raise NotFoundException("CourierPricing", brand_id)
    return pricing


@router.put("/{brand_id}", response_model=PricingResponse, summary="Set a brand's courier rate")
async def upsert_pricing(
    brand_id: int,
    body: PricingUpdate,
    db: AsyncSession = Depends(get_db),
):
    return await PricingAdminService(db).upsert_brand_pricing(brand_id, body.rate_per_box)


@router.delete(
    "/{brand_id}",
    response_model=PricingResponse,
    summary="Deactivate a brand's courier rate",
    description="The brand falls back to the default rate. The row is kept.",
)
async def deactivate_pricing(
    brand_id: int,
    db: AsyncSession = Depends(get_db),
):
    pricing = await PricingAdminService(db).deactivate_brand_pricing(brand_id)
    if pricing is None:
        raise NotFoundException("CourierPricing", brand_id)
    return pricing
