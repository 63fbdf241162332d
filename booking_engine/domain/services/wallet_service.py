"""
Wallet Service - brand wallet onboarding, recharges, history and audit
"""
from typing import Any

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import settings
from booking_engine.core.exceptions import (
    InvalidRequestError,
    LedgerInvariantViolationError,
    WalletNotFoundError,
)
from booking_engine.core.logging import get_logger
from booking_engine.db.compat import utcnow
from booking_engine.db.models.wallet import Wallet
from booking_engine.db.models.wallet_transaction import (
    TransactionCategory,
    TransactionType,
    WalletTransaction,
)
from booking_engine.domain.services.wallet_ledger import WalletLedger

logger = get_logger(__name__)


class WalletService:
    """Service for managing brand wallets"""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.ledger = WalletLedger(db)

    async def get_wallet(self, brand_id: int, for_update: bool = False) -> Wallet:
        # Ledger UPDATEs bypass the identity map, so always reload the row
        query = select(Wallet).where(Wallet.brand_id == brand_id).execution_options(populate_existing=True)
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        wallet = result.scalar_one_or_none()
        if not wallet:
            raise WalletNotFoundError(brand_id=brand_id)
        return wallet

    async def open_wallet(self, brand_id: int) -> Wallet:
        """Create the brand's wallet on onboarding. Idempotent."""
        result = await self.db.execute(select(Wallet).where(Wallet.brand_id == brand_id))
        wallet = result.scalar_one_or_none()
        if wallet:
            return wallet

        wallet = Wallet(brand_id=brand_id, balance=0, total_spent=0)
        self.db.add(wallet)
        try:
            await self.db.commit()
        except IntegrityError:
            # Concurrent onboarding created it first
            await self.db.rollback()
            return await self.get_wallet(brand_id)

        await self.db.refresh(wallet)
        logger.info("Wallet opened", extra_data={"brand_id": brand_id, "wallet_id": wallet.id})
        return wallet

    async def recharge_wallet(
        self,
        brand_id: int,
        amount: int,
        description: str | None = None,
        external_reference: str | None = None,
    ) -> WalletTransaction:
        """
        Credit a confirmed payment to the brand's wallet, opening it if needed.

        Replaying the same ``external_reference`` returns the original
        transaction instead of crediting twice.
        """
        wallet = await self.open_wallet(brand_id)

        if external_reference:
            existing = await self._find_by_reference(wallet.id, external_reference)
            if existing:
                logger.info(
                    "Recharge replayed, returning original transaction",
                    extra_data={"brand_id": brand_id, "transaction_id": existing.id}
                )
                return existing

        try:
            txn = await self.ledger.credit(
                wallet.id,
                amount,
                category=TransactionCategory.RECHARGE,
                external_reference=external_reference,
                description=description or "Wallet recharge",
            )
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            if external_reference:
                existing = await self._find_by_reference(wallet.id, external_reference)
                if existing:
                    return existing
            raise
        except Exception:
            await self.db.rollback()
            raise

        return txn

    async def adjust_wallet(
        self,
        brand_id: int,
        amount: int,
        description: str,
    ) -> WalletTransaction:
        """Manual admin correction. Positive amount credits, negative debits."""
        if not description:
            raise InvalidRequestError("Adjustments require a description", field="description")
        if amount == 0:
            raise InvalidRequestError("Adjustment amount must not be zero", field="amount")

        wallet = await self.get_wallet(brand_id)
        try:
            if amount > 0:
                txn = await self.ledger.credit(
                    wallet.id, amount,
                    category=TransactionCategory.ADJUSTMENT, description=description,
                )
            else:
                txn = await self.ledger.debit(
                    wallet.id, -amount,
                    category=TransactionCategory.ADJUSTMENT, description=description,
                )
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return txn

    async def _find_by_reference(self, wallet_id: int, external_reference: str) -> WalletTransaction | None:
        result = await self.db.execute(
            select(WalletTransaction).where(
                WalletTransaction.wallet_id == wallet_id,
                WalletTransaction.external_reference == external_reference,
            )
        )
        return result.scalar_one_or_none()

    async def wallet_balance(self, brand_id: int) -> int:
        result = await self.db.execute(select(Wallet.balance).where(Wallet.brand_id == brand_id))
        balance = result.scalar_one_or_none()
        if balance is None:
            raise WalletNotFoundError(brand_id=brand_id)
        return balance

    async def wallet_summary(self, brand_id: int) -> dict[str, Any]:
        """Balance plus lifetime credit/debit totals for the wallet dashboard"""
        wallet = await self.get_wallet(brand_id)
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(case(
                    (WalletTransaction.type == TransactionType.CREDIT, WalletTransaction.amount),
                    else_=0,
                )), 0),
                func.coalesce(func.sum(case(
                    (WalletTransaction.type == TransactionType.DEBIT, WalletTransaction.amount),
                    else_=0,
                )), 0),
                func.count(WalletTransaction.id),
            ).where(WalletTransaction.wallet_id == wallet.id)
        )
        total_credits, total_debits, count = result.one()
        return {
            "brand_id": brand_id,
            "wallet_id": wallet.id,
            "balance": wallet.balance,
            "total_credits": int(total_credits),
            "total_debits": int(total_debits),
            "total_spent": wallet.total_spent,
            "transaction_count": count,
            "last_recharge_at": wallet.last_recharge_at,
            "is_active": wallet.is_active,
            "is_frozen": wallet.is_frozen,
        }

    async def wallet_transactions(
        self,
        brand_id: int,
        page: int = 1,
        page_size: int | None = None,
    ) -> tuple[list[WalletTransaction], int]:
        """Newest-first page of the wallet's transactions, with the total count"""
        page_size = page_size or settings.TRANSACTIONS_PAGE_SIZE
        if page < 1 or page_size < 1:
            raise InvalidRequestError("page and page_size must be positive", field="page")

        wallet = await self.get_wallet(brand_id)
        total = (await self.db.execute(
            select(func.count(WalletTransaction.id)).where(WalletTransaction.wallet_id == wallet.id)
        )).scalar_one()
        result = await self.db.execute(
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet.id)
            .order_by(WalletTransaction.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def deactivate_wallet(self, brand_id: int) -> Wallet:
        wallet = await self.get_wallet(brand_id, for_update=True)
        wallet.is_active = False
        await self.db.commit()
        logger.info("Wallet deactivated", extra_data={"brand_id": brand_id, "wallet_id": wallet.id})
        return wallet

    async def active_wallet_ids(self) -> list[int]:
        result = await self.db.execute(
            select(Wallet.id).where(Wallet.is_active.is_(True)).order_by(Wallet.id)
        )
        return list(result.scalars().all())

    async def verify_wallet(self, wallet_id: int) -> dict[str, Any]:
        """
        Replay the transaction log and compare it with the stored balance.

        On any drift (a ``balance_after`` that does not follow from the
        previous row, a negative running balance, or a final balance that does
        not match) the wallet is frozen and LedgerInvariantViolationError raised.

        The wallet row stays write-locked from the first statement until the
        audit commits, so a concurrent debit waits instead of landing between
        the balance read and the replay.
        """
        # No-op UPDATE: row lock on PostgreSQL, write lock on SQLite (FOR UPDATE is ignored there)
        locked = await self.db.execute(
            update(Wallet)
            .where(Wallet.id == wallet_id)
            .values(balance=Wallet.balance, updated_at=Wallet.updated_at)
            .returning(Wallet.id)
            .execution_options(synchronize_session=False)
        )
        if locked.scalar_one_or_none() is None:
            await self.db.rollback()
            raise WalletNotFoundError(wallet_id=wallet_id)

        result = await self.db.execute(
            select(Wallet).where(Wallet.id == wallet_id).execution_options(populate_existing=True)
        )
        wallet = result.scalar_one()

        txns = await self.db.execute(
            select(WalletTransaction)
            .where(WalletTransaction.wallet_id == wallet_id)
            .order_by(WalletTransaction.id)
        )

        running = 0
        count = 0
        problem: tuple[str, dict[str, Any]] | None = None
        for txn in txns.scalars():
            count += 1
            running += txn.signed_amount
            if running < 0:
                problem = ("negative intermediate balance", {"transaction_id": txn.id, "running": running})
                break
            if txn.balance_after != running:
                problem = (
                    "balance_after does not match replay",
                    {"transaction_id": txn.id, "balance_after": txn.balance_after, "replayed": running},
                )
                break

        if problem is None and running != wallet.balance:
            problem = ("stored balance does not match replay", {"balance": wallet.balance, "replayed": running})

        if problem is not None:
            reason, details = problem
            await self.db.execute(
                update(Wallet).where(Wallet.id == wallet_id).values(is_frozen=True, updated_at=utcnow())
            )
            await self.db.commit()
            logger.critical(
                f"Ledger invariant violated, wallet frozen: {reason}",
                extra_data={"wallet_id": wallet_id, "brand_id": wallet.brand_id, **details}
            )
            raise LedgerInvariantViolationError(wallet_id, reason, details=details)

        # Releases the lock
        await self.db.commit()
        return {
            "wallet_id": wallet_id,
            "brand_id": wallet.brand_id,
            "balance": wallet.balance,
            "transaction_count": count,
            "consistent": True,
        }
