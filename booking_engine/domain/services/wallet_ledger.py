"""
Wallet Ledger - atomic check-and-debit over the brand wallet

Every balance change is one guarded UPDATE (compare-and-swap on the balance
column) followed by one appended transaction row carrying the balance the
UPDATE returned. The ledger never commits: the caller owns the unit of work,
so a debit and the shipment row it pays for land in the same transaction.
"""
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    LedgerInvariantViolationError,
    WalletInactiveError,
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

logger = get_logger(__name__)


def _validate_amount(amount, wallet_id: int) -> int:
    # bool is an int subclass, reject it explicitly
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount, wallet_id=wallet_id)
    return amount


class WalletLedger:
    """Append-only ledger operations on a single wallet row"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def balance(self, wallet_id: int) -> int:
        result = await self.db.execute(
            select(Wallet.balance).where(Wallet.id == wallet_id)
        )
        balance = result.scalar_one_or_none()
        if balance is None:
            raise WalletNotFoundError(wallet_id=wallet_id)
        return balance

    async def debit(
        self,
        wallet_id: int,
        amount: int,
        *,
        category: TransactionCategory = TransactionCategory.SHIPMENT_CHARGE,
        shipment_id: int | None = None,
        description: str | None = None,
    ) -> WalletTransaction:
        """
        Take ``amount`` from the wallet if and only if the balance covers it.

        The balance check and the decrement are the same statement, so two
        concurrent debits can never both pass a check against a stale balance.

        Raises:
            InvalidAmountError: amount is not a positive integer
            InsufficientFundsError: balance < amount (nothing written)
            WalletNotFoundError / WalletInactiveError
            LedgerInvariantViolationError: wallet is frozen
        """
        _validate_amount(amount, wallet_id)

        values = {"balance": Wallet.balance - amount, "updated_at": utcnow()}
        if category == TransactionCategory.SHIPMENT_CHARGE:
            values["total_spent"] = Wallet.total_spent + amount

        result = await self.db.execute(
            update(Wallet)
            .where(
                Wallet.id == wallet_id,
                Wallet.is_active.is_(True),
                Wallet.is_frozen.is_(False),
                Wallet.balance >= amount,
            )
            .values(**values)
            .returning(Wallet.balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            await self._raise_rejection(wallet_id, amount, shipment_id)

        return await self._append(
            wallet_id=wallet_id,
            txn_type=TransactionType.DEBIT,
            category=category,
            amount=amount,
            balance_after=new_balance,
            shipment_id=shipment_id,
            description=description,
        )

    async def credit(
        self,
        wallet_id: int,
        amount: int,
        *,
        category: TransactionCategory = TransactionCategory.RECHARGE,
        shipment_id: int | None = None,
        external_reference: str | None = None,
        description: str | None = None,
    ) -> WalletTransaction:
        """Add ``amount`` to the wallet. Same atomicity as debit."""
        _validate_amount(amount, wallet_id)

        values = {"balance": Wallet.balance + amount, "updated_at": utcnow()}
        if category == TransactionCategory.SHIPMENT_REFUND:
            values["total_spent"] = Wallet.total_spent - amount
        elif category == TransactionCategory.RECHARGE:
            values["last_recharge_at"] = utcnow()

        result = await self.db.execute(
            update(Wallet)
            .where(
                Wallet.id == wallet_id,
                Wallet.is_active.is_(True),
                Wallet.is_frozen.is_(False),
            )
            .values(**values)
            .returning(Wallet.balance)
            .execution_options(synchronize_session=False)
        )
        new_balance = result.scalar_one_or_none()
        if new_balance is None:
            await self._raise_rejection(wallet_id, amount, shipment_id)

        return await self._append(
            wallet_id=wallet_id,
            txn_type=TransactionType.CREDIT,
            category=category,
            amount=amount,
            balance_after=new_balance,
            shipment_id=shipment_id,
            external_reference=external_reference,
            description=description,
        )

    async def _append(
        self,
        *,
        wallet_id: int,
        txn_type: TransactionType,
        category: TransactionCategory,
        amount: int,
        balance_after: int,
        shipment_id: int | None = None,
        external_reference: str | None = None,
        description: str | None = None,
    ) -> WalletTransaction:
        txn = WalletTransaction(
            wallet_id=wallet_id,
            type=txn_type,
            category=category,
            amount=amount,
            balance_after=balance_after,
            shipment_id=shipment_id,
            external_reference=external_reference,
            description=description,
        )
        self.db.add(txn)
        # Flush assigns the id and trips the per-shipment unique constraint now,
        # before the caller stamps the id anywhere
        await self.db.flush()

        logger.info(
            f"Wallet {txn_type.value}",
            extra_data={
                "wallet_id": wallet_id,
                "transaction_id": txn.id,
                "category": category.value,
                "amount": amount,
                "balance_after": balance_after,
                "shipment_id": shipment_id,
            }
        )
        return txn

    async def _raise_rejection(self, wallet_id: int, amount: int, shipment_id: int | None) -> None:
        """Explain why the guarded UPDATE matched no row"""
        result = await self.db.execute(
            select(Wallet.balance, Wallet.is_active, Wallet.is_frozen)
            .where(Wallet.id == wallet_id)
        )
        row = result.one_or_none()
        if row is None:
            raise WalletNotFoundError(wallet_id=wallet_id)

        balance, is_active, is_frozen = row
        if not is_active:
            raise WalletInactiveError(wallet_id)
        if is_frozen:
            raise LedgerInvariantViolationError(wallet_id, "wallet is frozen pending audit")

        logger.info(
            "Debit rejected: insufficient funds",
            extra_data={
                "wallet_id": wallet_id,
                "balance": balance,
                "amount": amount,
                "shipment_id": shipment_id,
            }
        )
        raise InsufficientFundsError(
            wallet_id=wallet_id,
            current_balance=balance,
            required_amount=amount,
            shipment_id=shipment_id,
        )
