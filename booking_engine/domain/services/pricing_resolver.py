"""
Pricing Resolver - shipment cost from brand or default courier rates
"""
from decimal import Decimal, ROUND_HALF_EVEN
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import settings
from booking_engine.core.exceptions import InvalidRequestError, PricingUnavailableError
from booking_engine.core.logging import get_logger
from booking_engine.db.models.courier_pricing import CourierPricing
from booking_engine.domain.schemas import Dimensions, Priority

logger = get_logger(__name__)

_UNSET: Any = object()


def _coerce_priority(priority: Priority | str) -> Priority:
    try:
        return Priority(priority.upper() if isinstance(priority, str) else priority)
    except ValueError as e:
        raise InvalidRequestError(
            f"Unknown priority {priority!r}, expected one of LOW, MEDIUM, HIGH", field="priority"
        ) from e


def _validate_dimensions(dimensions: Dimensions | Mapping[str, Any]) -> None:
    if isinstance(dimensions, Dimensions):
        return
    for axis in ("length", "breadth", "height"):
        value = dimensions.get(axis)
        try:
            valid = value is not None and Decimal(str(value)) > 0
        except ArithmeticError:
            valid = False
        if not valid:
            raise InvalidRequestError(f"Dimension '{axis}' must be a positive number", field=f"dimensions.{axis}")


def round_minor_units(amount: Decimal) -> int:
    """Banker's rounding to whole minor units"""
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_EVEN))


class PricingResolver:
    """
    Resolves the cost of a shipment.

    ``default_rate`` is the fallback per-box rate for brands without an active
    pricing row; it comes from settings unless a caller injects one. Resolving
    cost has no side effects.
    """

    def __init__(
        self,
        db: AsyncSession,
        default_rate: Decimal | int | None = _UNSET,
        high_priority_multiplier: Decimal | None = None,
    ):
        self.db = db
        if default_rate is _UNSET:
            default_rate = settings.DEFAULT_RATE_PER_BOX
        self.default_rate = Decimal(str(default_rate)) if default_rate is not None else None
        self.high_priority_multiplier = (
            high_priority_multiplier
            if high_priority_multiplier is not None
            else settings.HIGH_PRIORITY_MULTIPLIER
        )

    async def get_brand_pricing(self, brand_id: int) -> CourierPricing | None:
        result = await self.db.execute(
            select(CourierPricing).where(CourierPricing.brand_id == brand_id)
        )
        return result.scalar_one_or_none()

    async def _rate_for(self, brand_id: int) -> tuple[Decimal, str]:
        pricing = await self.get_brand_pricing(brand_id)
        if pricing is not None and pricing.is_active:
            return Decimal(pricing.rate_per_box), "brand"
        if self.default_rate is not None:
            return self.default_rate, "default"

        logger.error(
            "No courier rate available",
            extra_data={"brand_id": brand_id, "has_brand_row": pricing is not None}
        )
        raise PricingUnavailableError(brand_id)

    async def quote(
        self,
        brand_id: int,
        box_count: int,
        dimensions: Dimensions | Mapping[str, Any],
        priority: Priority | str = Priority.MEDIUM,
    ) -> dict[str, Any]:
        """Cost with its breakdown, for the cost-estimate step of booking"""
        if isinstance(box_count, bool) or not isinstance(box_count, int) or box_count < 1:
            raise InvalidRequestError("box_count must be at least 1", field="box_count")
        _validate_dimensions(dimensions)
        priority = _coerce_priority(priority)

        rate, source = await self._rate_for(brand_id)
        base = rate * box_count
        multiplier = self.high_priority_multiplier if priority == Priority.HIGH else Decimal("1")
        total = round_minor_units(base * multiplier)

        return {
            "brand_id": brand_id,
            "box_count": box_count,
            "priority": priority.value,
            "rate_per_box": rate,
            "rate_source": source,
            "base_cost": base,
            "priority_multiplier": multiplier,
            "total": total,
        }

    async def resolve_cost(
        self,
        brand_id: int,
        box_count: int,
        dimensions: Dimensions | Mapping[str, Any],
        priority: Priority | str = Priority.MEDIUM,
    ) -> int:
        """Cost in minor units. Raises InvalidRequestError or PricingUnavailableError."""
        breakdown = await self.quote(brand_id, box_count, dimensions, priority)
        return breakdown["total"]


class PricingAdminService:
    """Rate card maintenance for the pricing administration collaborator"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_brand_pricing(self, brand_id: int) -> CourierPricing | None:
        result = await self.db.execute(
            select(CourierPricing).where(CourierPricing.brand_id == brand_id)
        )
        return result.scalar_one_or_none()

    async def upsert_brand_pricing(self, brand_id: int, rate_per_box: Decimal) -> CourierPricing:
        rate = Decimal(str(rate_per_box))
        if rate <= 0:
            raise InvalidRequestError("rate_per_box must be positive", field="rate_per_box")

        result = await self.db.execute(
            select(CourierPricing).where(CourierPricing.brand_id == brand_id).with_for_update()
        )
        pricing = result.scalar_one_or_none()
        if pricing is None:
            pricing = CourierPricing(brand_id=brand_id, rate_per_box=rate, is_active=True)
            self.db.add(pricing)
        else:
            pricing.rate_per_box = rate
            pricing.is_active = True

        await self.db.commit()
        await self.db.refresh(pricing)
        logger.info(
            "Brand pricing updated",
            extra_data={"brand_id": brand_id, "rate_per_box": str(rate)}
        )
        return pricing

    async def deactivate_brand_pricing(self, brand_id: int) -> CourierPricing | None:
        """Fall back to the default rate. The row is kept for history."""
        pricing = await self.get_brand_pricing(brand_id)
        if pricing is None:
            return None
        pricing.is_active = False
        await self.db.commit()
        logger.info("Brand pricing deactivated", extra_data={"brand_id": brand_id})
        return pricing
