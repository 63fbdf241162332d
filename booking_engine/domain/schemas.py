"""
Booking Request Schemas

Declared parts are a tagged union keyed on ``category``: each category carries
its own attributes and is validated here, at the authorization boundary.
"""
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Literal, Mapping, Union

from pydantic import BaseModel, Field, ValidationError, field_validator

from booking_engine.core.exceptions import InvalidRequestError


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class Dimensions(BaseModel):
    """Box dimensions in centimetres"""
    length: Decimal = Field(gt=0)
    breadth: Decimal = Field(gt=0)
    height: Decimal = Field(gt=0)

    def to_json(self) -> dict[str, str]:
        return {"length": str(self.length), "breadth": str(self.breadth), "height": str(self.height)}


class _PartLine(BaseModel):
    part_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(ge=1)
    name: str | None = Field(default=None, max_length=200)

    @field_validator("part_id")
    @classmethod
    def strip_part_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("part_id must not be blank")
        return v


class ElectricalPart(_PartLine):
    category: Literal["ELECTRICAL"]
    voltage: Decimal = Field(gt=0)
    wattage: Decimal | None = Field(default=None, gt=0)
    warranty_months: int | None = Field(default=None, ge=0, le=120)


class MechanicalPart(_PartLine):
    category: Literal["MECHANICAL"]
    material: str = Field(min_length=1, max_length=100)
    weight_grams: Decimal | None = Field(default=None, gt=0)


class CosmeticPart(_PartLine):
    category: Literal["COSMETIC"]
    color: str | None = Field(default=None, max_length=50)
    finish: str | None = Field(default=None, max_length=50)


class GenericPart(_PartLine):
    category: Literal["GENERIC"]
    attributes: dict[str, str] = Field(default_factory=dict, max_length=20)


DeclaredPart = Annotated[
    Union[ElectricalPart, MechanicalPart, CosmeticPart, GenericPart],
    Field(discriminator="category"),
]


class ShipmentRequest(BaseModel):
    """A brand's request to book one consignment"""
    brand_id: int
    recipient_id: int
    box_count: int = Field(ge=1)
    dimensions: Dimensions
    declared_parts: list[DeclaredPart] = Field(min_length=1)
    priority: Priority = Priority.MEDIUM
    notes: str | None = Field(default=None, max_length=1000)

    def parts_json(self) -> list[dict[str, Any]]:
        return [part.model_dump(mode="json", exclude_none=True) for part in self.declared_parts]

    def units_by_part(self) -> dict[str, int]:
        """Total units per part id (a part may be declared on several lines)"""
        totals: dict[str, int] = {}
        for part in self.declared_parts:
            totals[part.part_id] = totals.get(part.part_id, 0) + part.quantity
        return totals


def _first_error(exc: ValidationError) -> tuple[str, str]:
    error = exc.errors()[0]
    field = ".".join(str(loc) for loc in error.get("loc", ()))
    return field, error.get("msg", "invalid value")


def parse_shipment_request(data: ShipmentRequest | Mapping[str, Any]) -> ShipmentRequest:
    """Validate raw input into a ShipmentRequest, raising InvalidRequestError"""
    if isinstance(data, ShipmentRequest):
        return data
    try:
        return ShipmentRequest.model_validate(data)
    except ValidationError as e:
        field, msg = _first_error(e)
        raise InvalidRequestError(
            f"Invalid shipment request: {field}: {msg}",
            field=field,
            details={"errors": e.errors(include_url=False, include_context=False, include_input=False)},
        ) from e
