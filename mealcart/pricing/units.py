"""Quantity parsing and unit-aware price calculation."""

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from mealcart.pricing.models import PriceObservation

UNIT_KG = "kg"
UNIT_L = "l"
UNIT_COUNT = "unit"

# unit word -> (unit class, factor to the class base)
_UNIT_TABLE = {
    "g": (UNIT_KG, Decimal("0.001")),
    "gm": (UNIT_KG, Decimal("0.001")),
    "gms": (UNIT_KG, Decimal("0.001")),
    "gram": (UNIT_KG, Decimal("0.001")),
    "grams": (UNIT_KG, Decimal("0.001")),
    "kg": (UNIT_KG, Decimal("1")),
    "kgs": (UNIT_KG, Decimal("1")),
    "kilo": (UNIT_KG, Decimal("1")),
    "kilogram": (UNIT_KG, Decimal("1")),
    "kilograms": (UNIT_KG, Decimal("1")),
    "ml": (UNIT_L, Decimal("0.001")),
    "millilitre": (UNIT_L, Decimal("0.001")),
    "milliliter": (UNIT_L, Decimal("0.001")),
    "millilitres": (UNIT_L, Decimal("0.001")),
    "milliliters": (UNIT_L, Decimal("0.001")),
    "l": (UNIT_L, Decimal("1")),
    "ltr": (UNIT_L, Decimal("1")),
    "litre": (UNIT_L, Decimal("1")),
    "liter": (UNIT_L, Decimal("1")),
    "litres": (UNIT_L, Decimal("1")),
    "liters": (UNIT_L, Decimal("1")),
}

_QUANTITY_PATTERN = re.compile(
    r"^\s*(?P<number>[-+]?\d+(?:\.\d+)?(?:\s*/\s*\d+(?:\.\d+)?)?)?\s*(?P<unit>[a-z]*)",
    re.IGNORECASE,
)

_CENTS = Decimal("0.01")


class InvalidQuantityError(ValueError):
    """Raised when a requested quantity is explicitly zero or negative."""

    pass


@dataclass(frozen=True)
class Quantity:
    """A quantity expressed in its unit class base (kg, l or count)."""

    value: Decimal
    unit_class: str


@dataclass
class PriceCalculation:
    """Price for a requested quantity."""

    price: Decimal
    is_estimate: bool


def _parse_number(text: str) -> Decimal:
    if "/" in text:
        numerator, denominator = (part.strip() for part in text.split("/", 1))
        if Decimal(denominator) == 0:
            return Decimal(numerator)
        return Decimal(numerator) / Decimal(denominator)
    return Decimal(text)


def parse_quantity(text: Optional[str], strict: bool = False) -> Quantity:
    """
    Parse a quantity string such as "500g", "1 kg", "2 pcs" or "1/2 l".

    Mass is expressed in kg and volume in litres; anything else is a count.
    A missing or unreadable number counts as 1.

    Args:
        text: Raw quantity string
        strict: Raise InvalidQuantityError for an explicit non-positive number
                instead of treating it as 1

    Returns:
        Parsed Quantity
    """
    if not text or not text.strip():
        return Quantity(Decimal("1"), UNIT_COUNT)

    match = _QUANTITY_PATTERN.match(text)
    number = match.group("number") if match else None
    unit_word = (match.group("unit") if match else "").lower()

    value = _parse_number(number) if number else Decimal("1")
    if value <= 0:
        if strict:
            raise InvalidQuantityError(f"Quantity must be positive: {text!r}")
        value = Decimal("1")

    unit_class, factor = _UNIT_TABLE.get(unit_word, (UNIT_COUNT, Decimal("1")))
    return Quantity(value * factor, unit_class)


def calculate_total(
    observation: Optional[PriceObservation],
    target_quantity: Optional[str],
) -> Optional[PriceCalculation]:
    """
    Price an observation for the requested quantity.

    Matching unit classes scale by the value ratio. Differing classes (a
    count against a weight, or weight against volume) scale by the same
    ratio as a best effort rather than failing.

    Args:
        observation: Resolved price and the quantity it applies to
        target_quantity: Quantity from the shopping list, e.g. "500g"

    Returns:
        PriceCalculation, or None when there is no observation

    Raises:
        InvalidQuantityError: If the target quantity is explicitly non-positive
    """
    if observation is None or observation.price is None:
        return None

    target = parse_quantity(target_quantity, strict=True)
    source = parse_quantity(observation.unit)

    price = observation.price / source.value * target.value
    return PriceCalculation(
        price=price.quantize(_CENTS, rounding=ROUND_HALF_UP),
        is_estimate=observation.is_estimate,
    )
