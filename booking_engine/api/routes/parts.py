"""
Part Approval Routes
"""
from datetime import datetime
from decimal import Decimal
from typing import List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.dependencies.admin_auth import require_admin_api_key
from booking_engine.db.database import get_db
from booking_engine.db.models.part_approval import PartApprovalStatus
from booking_engine.domain.services.authorization_index import AuthorizationIndex
from booking_engine.domain.services.part_approval_service import PartApprovalService

router = APIRouter()


class PartApprovalResponse(BaseModel):
    id: int
    brand_id: int
    part_id: str
    part_name: str
    category: str | None
    submitted_price: Decimal | None
    status: PartApprovalStatus
    rejection_reason: str | None
    reviewed_at: datetime | None
    times_shipped: int
    units_shipped: int
    created_at: datetime | None

    class Config:
        from_attributes = True


class PartSubmission(BaseModel):
    brand_id: int
    part_id: str = Field(min_length=1, max_length=64)
    part_name: str = Field(min_length=1, max_length=200)
    category: str | None = Field(default=None, max_length=50)
    submitted_price: Decimal | None = Field(default=None, ge=0)


class RejectionRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


@router.post(
    "/approvals",
    response_model=PartApprovalResponse,
    status_code=201,
    summary="Submit a part for catalog approval",
)
async def submit_part(
    body: PartSubmission,
    db: AsyncSession = Depends(get_db),
):
    return await PartApprovalService(db).submit_part(
        body.brand_id, body.part_id, body.part_name, body.category, body.submitted_price
    )


@router.get(
    "/approvals",
    response_model=List[PartApprovalResponse],
    summary="List a brand's approval records",
)
async def list_approvals(
    brand_id: int,
    status: PartApprovalStatus | None = Query(None),
    db: AsyncSession = Depends(get_db),
):
    return await PartApprovalService(db).list_approvals(brand_id, status)


@router.get(
    "/approved",
    response_model=List[PartApprovalResponse],
    summary="Parts a brand may currently ship",
)
async def list_approved_parts(
    brand_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await AuthorizationIndex(db).approved_parts(brand_id)


@router.post(
    "/approvals/{approval_id}/review",
    response_model=PartApprovalResponse,
    summary="Start reviewing a submission",
)
async def start_review(
    approval_id: int,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
):
    return await PartApprovalService(db).start_review(approval_id)


@router.post(
    "/approvals/{approval_id}/approve",
    response_model=PartApprovalResponse,
    summary="Approve a part",
)
async def approve_part(
    approval_id: int,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
):
    return await PartApprovalService(db).approve_part(approval_id)


@router.post(
    "/approvals/{approval_id}/reject",
    response_model=PartApprovalResponse,
    summary="Reject a part",
    description="A rejection reason is required. The brand may resubmit later.",
)
async def reject_part(
    approval_id: int,
    body: RejectionRequest,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
):
    return await PartApprovalService(db).reject_part(approval_id, body.reason)
