"""
Booking Orchestrator - authorized, prepaid shipment booking

Flow:
1. Structural validation (nothing persisted on failure)
2. Authorization gate: recipient, then every declared part
3. Pricing
4. One unit of work: debit the wallet and move the shipment to
   CARRIER_PENDING, so no shipment exists without its charge and no charge
   exists without its shipment
5. After commit, hand the AWB request to a Celery worker

Carrier outcomes arrive through dispatch_to_carrier (worker), the carrier
callback endpoint, or the reconciliation sweep.
"""
from datetime import timedelta
from typing import Any, Callable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import settings
from booking_engine.core.exceptions import (
    AuthorizationException,
    CarrierError,
    InvalidStateTransitionError,
    PricingUnavailableError,
    ShipmentNotFoundError,
    UnapprovedPartError,
    UnauthorizedRecipientError,
    WalletException,
    WalletNotFoundError,
)
from booking_engine.core.logging import get_logger, log_async_operation
from booking_engine.db.compat import utcnow
from booking_engine.db.models.shipment import Shipment, ShipmentStatusEvent
from booking_engine.db.models.wallet import Wallet
from booking_engine.db.models.wallet_transaction import TransactionCategory, WalletTransaction
from booking_engine.domain.schemas import ShipmentRequest, parse_shipment_request
from booking_engine.domain.services.authorization_index import AuthorizationIndex
from booking_engine.domain.services.carrier_client import CarrierClient
from booking_engine.domain.services.part_approval_service import PartApprovalService
from booking_engine.domain.services.pricing_resolver import PricingResolver
from booking_engine.domain.services.wallet_ledger import WalletLedger
from booking_engine.domain.shipment_states import (
    REFUNDABLE_ON_CANCEL,
    ShipmentStatus,
    ensure_transition,
)

logger = get_logger(__name__)


def calculate_backoff_seconds(
    retry_count: int,
    *,
    base_seconds: int,
    max_backoff_seconds: int,
) -> int:
    """
    Exponential backoff with a hard upper bound:
        backoff = base_seconds * (2 ** retry_count), capped at max_backoff_seconds

    Never computes huge powers when retry_count is unexpectedly large.
    """
    if retry_count < 0:
        retry_count = 0

    if base_seconds <= 0 or max_backoff_seconds <= 0:
        return 0

    if base_seconds >= max_backoff_seconds:
        return max_backoff_seconds

    # 2**retry_count >= ceil(max/base) means we are already capped
    required_multiplier = (max_backoff_seconds + base_seconds - 1) // base_seconds
    is_power_of_two = (required_multiplier & (required_multiplier - 1)) == 0
    threshold = required_multiplier.bit_length() - 1
    if not is_power_of_two:
        threshold += 1

    if retry_count >= threshold:
        return max_backoff_seconds

    return min(base_seconds * (1 << retry_count), max_backoff_seconds)


def enqueue_carrier_request(shipment_id: int) -> None:
    """Default dispatcher: fire-and-forget Celery task"""
    from booking_engine.workers.tasks import dispatch_carrier_request

    dispatch_carrier_request.delay(shipment_id)


class BookingOrchestrator:
    """Drives a shipment through its state machine"""

    def __init__(
        self,
        db: AsyncSession,
        pricing: PricingResolver | None = None,
        authorization: AuthorizationIndex | None = None,
        carrier_client: CarrierClient | None = None,
        dispatcher: Callable[[int], None] | None = None,
    ):
        self.db = db
        self.pricing = pricing or PricingResolver(db)
        self.authorization = authorization or AuthorizationIndex(db)
        self.ledger = WalletLedger(db)
        self.part_approvals = PartApprovalService(db)
        self.carrier_client = carrier_client or CarrierClient()
        self.dispatcher = dispatcher or enqueue_carrier_request

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def get_shipment(self, shipment_id: int, for_update: bool = False) -> Shipment:
        query = select(Shipment).where(Shipment.id == shipment_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.db.execute(query)
        shipment = result.scalar_one_or_none()
        if not shipment:
            raise ShipmentNotFoundError(shipment_id)
        return shipment

    async def list_status_events(self, shipment_id: int) -> list[ShipmentStatusEvent]:
        await self.get_shipment(shipment_id)
        result = await self.db.execute(
            select(ShipmentStatusEvent)
            .where(ShipmentStatusEvent.shipment_id == shipment_id)
            .order_by(ShipmentStatusEvent.id)
        )
        return list(result.scalars().all())

    async def _find_by_idempotency_key(self, brand_id: int, key: str) -> Shipment | None:
        result = await self.db.execute(
            select(Shipment).where(
                Shipment.brand_id == brand_id,
                Shipment.idempotency_key == key,
            )
        )
        return result.scalar_one_or_none()

    async def _wallet_id_for_brand(self, brand_id: int) -> int:
        result = await self.db.execute(select(Wallet.id).where(Wallet.brand_id == brand_id))
        wallet_id = result.scalar_one_or_none()
        if wallet_id is None:
            raise WalletNotFoundError(brand_id=brand_id)
        return wallet_id

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, shipment: Shipment, target: ShipmentStatus, note: str | None = None) -> None:
        """Move to ``target`` and append the history event. Does not commit."""
        current = shipment.status
        ensure_transition(current, target, shipment.id)
        shipment.status = target
        self.db.add(ShipmentStatusEvent(
            shipment_id=shipment.id,
            from_status=current,
            to_status=target,
            note=note[:500] if note else None,
        ))
        logger.info(
            f"Shipment {current.value} -> {target.value}",
            extra_data={
                "shipment_id": shipment.id,
                "brand_id": shipment.brand_id,
                "from_status": current.value,
                "to_status": target.value,
            }
        )

    # ------------------------------------------------------------------
    # Gate
    # ------------------------------------------------------------------

    async def _authorize(self, request: ShipmentRequest, shipment_id: int | None = None) -> None:
        """Recipient first, then each part. Runs before any pricing or ledger call."""
        if not await self.authorization.is_recipient_authorized(request.brand_id, request.recipient_id):
            raise UnauthorizedRecipientError(request.brand_id, request.recipient_id, shipment_id)

        for part_id in request.units_by_part():
            if not await self.authorization.is_part_approved(request.brand_id, part_id):
                raise UnapprovedPartError(request.brand_id, part_id, shipment_id)

    async def quote_shipment(self, request: ShipmentRequest | Mapping[str, Any]) -> dict[str, Any]:
        """Validation, authorization and pricing without creating anything"""
        request = parse_shipment_request(request)
        await self._authorize(request)
        return await self.pricing.quote(
            request.brand_id, request.box_count, request.dimensions, request.priority
        )

    # ------------------------------------------------------------------
    # Booking
    # ------------------------------------------------------------------

    async def create_shipment(
        self,
        request: ShipmentRequest | Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> Shipment:
        shipment, _ = await self.book_shipment(request, idempotency_key)
        return shipment

    async def book_shipment(
        self,
        request: ShipmentRequest | Mapping[str, Any],
        idempotency_key: str | None = None,
    ) -> tuple[Shipment, bool]:
        """
        Book a shipment and charge the brand's wallet.

        Returns ``(shipment, created)``: the new shipment in CARRIER_PENDING,
        or the previously created shipment and False when ``idempotency_key``
        was already used by the brand.

        Raises:
            InvalidRequestError: malformed request, nothing persisted
            UnauthorizedRecipientError / UnapprovedPartError: shipment REJECTED
            PricingUnavailableError: shipment PRICING_FAILED
            InsufficientFundsError (or another wallet error): shipment DEBIT_FAILED
        """
        request = parse_shipment_request(request)

        if idempotency_key:
            existing = await self._find_by_idempotency_key(request.brand_id, idempotency_key)
            if existing:
                logger.info(
                    "Idempotent replay of shipment request",
                    extra_data={"shipment_id": existing.id, "brand_id": request.brand_id}
                )
                return existing, False

        shipment = Shipment(
            brand_id=request.brand_id,
            recipient_id=request.recipient_id,
            box_count=request.box_count,
            dimensions=request.dimensions.to_json(),
            declared_parts=request.parts_json(),
            priority=request.priority.value,
            notes=request.notes,
            status=ShipmentStatus.DRAFT,
            idempotency_key=idempotency_key,
            carrier_attempts=0,
        )
        self.db.add(shipment)
        try:
            await self.db.flush()
        except IntegrityError:
            # A concurrent request with the same key won the unique constraint
            await self.db.rollback()
            if idempotency_key:
                existing = await self._find_by_idempotency_key(request.brand_id, idempotency_key)
                if existing:
                    return existing, False
            raise

        try:
            self.db.add(ShipmentStatusEvent(
                shipment_id=shipment.id, from_status=None, to_status=ShipmentStatus.DRAFT,
            ))
            self._transition(shipment, ShipmentStatus.VALIDATED)

            try:
                await self._authorize(request, shipment.id)
            except AuthorizationException as e:
                shipment.failure_reason = e.message
                self._transition(shipment, ShipmentStatus.REJECTED, e.message)
                await self.db.commit()
                raise

            try:
                cost = await self.pricing.resolve_cost(
                    request.brand_id, request.box_count, request.dimensions, request.priority
                )
            except PricingUnavailableError as e:
                e.details["shipment_id"] = shipment.id
                shipment.failure_reason = e.message
                self._transition(shipment, ShipmentStatus.PRICING_FAILED, e.message)
                await self.db.commit()
                raise

            shipment.cost = cost
            self._transition(shipment, ShipmentStatus.PRICED)

            try:
                wallet_id = await self._wallet_id_for_brand(request.brand_id)
                txn = await self.ledger.debit(
                    wallet_id,
                    cost,
                    category=TransactionCategory.SHIPMENT_CHARGE,
                    shipment_id=shipment.id,
                    description=f"Shipment #{shipment.id}: {request.box_count} box(es), {request.priority.value}",
                )
            except WalletException as e:
                # The guarded UPDATE matched nothing, so there is nothing to undo
                e.details["shipment_id"] = shipment.id
                shipment.failure_reason = e.message
                self._transition(shipment, ShipmentStatus.DEBIT_FAILED, e.message)
                await self.db.commit()
                raise

            shipment.wallet_transaction_id = txn.id
            self._transition(shipment, ShipmentStatus.DEBITED)
            self._transition(shipment, ShipmentStatus.CARRIER_PENDING)
            await self.part_approvals.record_usage(request.brand_id, request.units_by_part())
            await self.db.commit()
        except (AuthorizationException, PricingUnavailableError, WalletException):
            raise
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Shipment booked",
            extra_data={
                "shipment_id": shipment.id,
                "brand_id": shipment.brand_id,
                "cost": shipment.cost,
                "wallet_transaction_id": shipment.wallet_transaction_id,
            }
        )

        try:
            self.dispatcher(shipment.id)
        except Exception as e:
            # The pending timeout in the reconciliation sweep picks the shipment up
            logger.error(
                "Failed to enqueue carrier request",
                extra_data={"shipment_id": shipment.id, "error": str(e)},
                exc_info=True
            )

        return shipment, True

    # ------------------------------------------------------------------
    # Carrier outcomes
    # ------------------------------------------------------------------

    @log_async_operation("dispatch_to_carrier")
    async def dispatch_to_carrier(self, shipment_id: int) -> Shipment:
        """
        Worker entry point: request the AWB and record the outcome.

        The attempt is counted and committed before the HTTP call so no
        database transaction stays open across network I/O.
        """
        shipment = await self.get_shipment(shipment_id, for_update=True)
        if shipment.status != ShipmentStatus.CARRIER_PENDING:
            logger.info(
                "Skipping carrier dispatch, shipment no longer pending",
                extra_data={"shipment_id": shipment_id, "status": shipment.status.value}
            )
            await self.db.commit()
            return shipment

        shipment.carrier_attempts += 1
        attempt = shipment.carrier_attempts
        await self.db.commit()

        recipient = await self.authorization.get_recipient(shipment.brand_id, shipment.recipient_id)
        try:
            tracking_number = await self.carrier_client.request_awb(shipment, recipient)
        except CarrierError as e:
            logger.warning(
                "Carrier attempt failed",
                extra_data={"shipment_id": shipment_id, "attempt": attempt, "error": e.message}
            )
            return await self.handle_carrier_failure(shipment_id, e.message)

        return await self.handle_carrier_success(shipment_id, tracking_number)

    async def handle_carrier_success(self, shipment_id: int, tracking_number: str) -> Shipment:
        """Record the AWB. Repeated confirmations with the same number are no-ops."""
        shipment = await self.get_shipment(shipment_id, for_update=True)

        if shipment.status == ShipmentStatus.CONFIRMED:
            await self.db.commit()
            if shipment.tracking_number != tracking_number:
                logger.warning(
                    "Conflicting carrier confirmation ignored",
                    extra_data={
                        "shipment_id": shipment_id,
                        "tracking_number": shipment.tracking_number,
                        "received": tracking_number,
                    }
                )
            return shipment

        status = shipment.status
        try:
            if status == ShipmentStatus.CARRIER_FAILED:
                # Confirmation arrived after the shipment was marked failed
                self._transition(shipment, ShipmentStatus.CARRIER_PENDING, "late carrier confirmation")
            self._transition(shipment, ShipmentStatus.CONFIRMED, f"AWB {tracking_number}")
        except InvalidStateTransitionError:
            await self.db.rollback()
            logger.error(
                "Carrier confirmed a shipment that is no longer bookable",
                extra_data={
                    "shipment_id": shipment_id,
                    "status": status.value,
                    "tracking_number": tracking_number,
                }
            )
            raise
        shipment.tracking_number = tracking_number
        shipment.carrier_last_error = None
        shipment.next_carrier_attempt_at = None
        await self.db.commit()
        return shipment

    async def handle_carrier_failure(self, shipment_id: int, error: str) -> Shipment:
        """CARRIER_PENDING -> CARRIER_FAILED and schedule the sweep's next attempt"""
        shipment = await self.get_shipment(shipment_id, for_update=True)

        if shipment.status != ShipmentStatus.CARRIER_FAILED:
            try:
                self._transition(shipment, ShipmentStatus.CARRIER_FAILED, error)
            except InvalidStateTransitionError:
                await self.db.rollback()
                raise

        backoff = calculate_backoff_seconds(
            max(shipment.carrier_attempts - 1, 0),
            base_seconds=settings.CARRIER_RETRY_BASE_SECONDS,
            max_backoff_seconds=settings.CARRIER_MAX_BACKOFF_SECONDS,
        )
        shipment.carrier_last_error = error[:1000] if error else None
        shipment.next_carrier_attempt_at = utcnow() + timedelta(seconds=backoff)
        await self.db.commit()

        logger.warning(
            "Carrier request failed",
            extra_data={
                "shipment_id": shipment_id,
                "attempts": shipment.carrier_attempts,
                "next_attempt_in_seconds": backoff,
                "error": error,
            }
        )
        return shipment

    async def retry_carrier(self, shipment_id: int) -> Shipment:
        """Sweep retry: CARRIER_FAILED -> CARRIER_PENDING, then dispatch again"""
        shipment = await self.get_shipment(shipment_id, for_update=True)
        try:
            self._transition(shipment, ShipmentStatus.CARRIER_PENDING, "sweep retry")
        except InvalidStateTransitionError:
            await self.db.rollback()
            raise
        await self.db.commit()
        return await self.dispatch_to_carrier(shipment_id)

    # ------------------------------------------------------------------
    # Compensation
    # ------------------------------------------------------------------

    async def _refund_charge(self, shipment: Shipment, reason: str) -> WalletTransaction:
        """Credit back exactly the original SHIPMENT_CHARGE. Does not commit."""
        result = await self.db.execute(
            select(WalletTransaction).where(WalletTransaction.id == shipment.wallet_transaction_id)
        )
        charge = result.scalar_one()
        return await self.ledger.credit(
            charge.wallet_id,
            charge.amount,
            category=TransactionCategory.SHIPMENT_REFUND,
            shipment_id=shipment.id,
            description=f"Refund for shipment #{shipment.id}: {reason}"[:500],
        )

    async def refund_shipment(self, shipment_id: int, reason: str) -> Shipment:
        """CARRIER_FAILED -> REFUNDED with the compensating credit, one unit of work"""
        shipment = await self.get_shipment(shipment_id, for_update=True)
        try:
            ensure_transition(shipment.status, ShipmentStatus.REFUNDED, shipment_id)
            refund = await self._refund_charge(shipment, reason)
            shipment.failure_reason = reason
            self._transition(shipment, ShipmentStatus.REFUNDED, reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.warning(
            "Shipment refunded",
            extra_data={
                "shipment_id": shipment_id,
                "brand_id": shipment.brand_id,
                "amount": refund.amount,
                "refund_transaction_id": refund.id,
                "carrier_attempts": shipment.carrier_attempts,
            }
        )
        return shipment

    async def cancel_shipment(self, shipment_id: int, reason: str | None = None) -> Shipment:
        """
        Cancel a shipment that has not been confirmed by the carrier.

        Before the debit nothing moves; after it the charge is credited back
        in the same unit of work as the status change.
        """
        reason = reason or "cancelled by brand"
        shipment = await self.get_shipment(shipment_id, for_update=True)
        try:
            ensure_transition(shipment.status, ShipmentStatus.CANCELLED, shipment_id)
            if shipment.status in REFUNDABLE_ON_CANCEL:
                await self._refund_charge(shipment, reason)
            shipment.failure_reason = reason
            self._transition(shipment, ShipmentStatus.CANCELLED, reason)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise
        return shipment
