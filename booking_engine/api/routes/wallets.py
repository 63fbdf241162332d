"""
Wallet API Routes
"""
from datetime import datetime
from typing import Any, List

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.api.dependencies.admin_auth import require_admin_api_key
from booking_engine.core.config import settings
from booking_engine.db.database import get_db
from booking_engine.domain.services.wallet_service import WalletService

router = APIRouter()


class WalletSummaryResponse(BaseModel):
    brand_id: int
    wallet_id: int
    balance: int
    total_credits: int
    total_debits: int
    total_spent: int
    transaction_count: int
    last_recharge_at: datetime | None
    is_active: bool
    is_frozen: bool


class TransactionResponse(BaseModel):
    id: int
    type: str
    category: str
    amount: int
    balance_after: int
    shipment_id: int | None
    external_reference: str | None
    description: str | None
    created_at: datetime | None

    class Config:
        from_attributes = True


class TransactionPageResponse(BaseModel):
    items: List[TransactionResponse]
    total: int
    page: int
    page_size: int


class RechargeRequest(BaseModel):
    amount: int = Field(gt=0, description="Minor currency units")
    description: str | None = Field(default=None, max_length=500)
    external_reference: str | None = Field(default=None, max_length=100)


class AdjustmentRequest(BaseModel):
    amount: int = Field(description="Minor units, negative to debit")
    description: str = Field(min_length=1, max_length=500)


def _transaction(txn) -> dict[str, Any]:
    return {
        "id": txn.id,
        "type": txn.type.value,
        "category": txn.category.value,
        "amount": txn.amount,
        "balance_after": txn.balance_after,
        "shipment_id": txn.shipment_id,
        "external_reference": txn.external_reference,
        "description": txn.description,
        "created_at": txn.created_at,
    }


@router.get(
    "/{brand_id}",
    response_model=WalletSummaryResponse,
    summary="Wallet balance and lifetime totals",
)
async def get_wallet(
    brand_id: int,
    db: AsyncSession = Depends(get_db),
):
    return await WalletService(db).wallet_summary(brand_id)


@router.get(
    "/{brand_id}/transactions",
    response_model=TransactionPageResponse,
    summary="Wallet transaction history, newest first",
)
async def get_transactions(
    brand_id: int,
    page: int = Query(1, ge=1),
    page_size: int | None = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    service = WalletService(db)
    items, total = await service.wallet_transactions(brand_id, page, page_size)
    return {
        "items": [_transaction(txn) for txn in items],
        "total": total,
        "page": page,
        "page_size": page_size or settings.TRANSACTIONS_PAGE_SIZE,
    }


@router.post(
    "/{brand_id}/recharge",
    response_model=TransactionResponse,
    status_code=201,
    summary="Credit a confirmed payment",
    description=(
        "Called by the payment integration once a payment is captured. "
        "Replaying the same external_reference returns the original transaction."
    ),
)
async def recharge_wallet(
    brand_id: int,
    body: RechargeRequest,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
):
    txn = await WalletService(db).recharge_wallet(
        brand_id, body.amount, body.description, body.external_reference
    )
    return _transaction(txn)


@router.post(
    "/{brand_id}/adjust",
    response_model=TransactionResponse,
    status_code=201,
    summary="Manual balance adjustment",
)
async def adjust_wallet(
    brand_id: int,
    body: AdjustmentRequest,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
):
    txn = await WalletService(db).adjust_wallet(brand_id, body.amount, body.description)
    return _transaction(txn)


@router.post(
    "/{brand_id}/audit",
    summary="Replay the ledger and verify the balance",
    description="A mismatch freezes the wallet and returns 409.",
)
async def audit_wallet(
    brand_id: int,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
):
    service = WalletService(db)
    wallet = await service.get_wallet(brand_id)
    return await service.verify_wallet(wallet.id)


@router.post(
    "/{brand_id}/deactivate",
    response_model=WalletSummaryResponse,
    summary="Deactivate a wallet",
)
async def deactivate_wallet(
    brand_id: int,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
):
    service = WalletService(db)
    await service.deactivate_wallet(brand_id)
    return await service.wallet_summary(brand_id)


@router.put(
    "/{brand_id}",
    response_model=WalletSummaryResponse,
    summary="Open a wallet for an onboarded brand",
    description="Idempotent: an existing wallet is returned unchanged.",
)
async def open_wallet(
    brand_id: int,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(require_admin_api_key),
):
    service = WalletService(db)
    await service.open_wallet(brand_id)
    return await service.wallet_summary(brand_id)
