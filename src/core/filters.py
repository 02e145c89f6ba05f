"""
Exchange filter quantization helpers.

Prices and quantities must sit on the exchange's grid: reachable from the
filter minimum by whole multiples of the tick (price) or step (lot) size, and
within [min, max]. Values are snapped down to the nearest grid point.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Any, Dict, Union

from src.core.errors import InvalidAmount

Number = Union[Decimal, str, int]


def to_decimal(value: Any) -> Decimal:
    """Convert exchange strings, ints and config floats to Decimal without binary noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


@dataclass(frozen=True)
class PriceFilter:
    min_price: Decimal
    max_price: Decimal
    tick_size: Decimal

    def __post_init__(self) -> None:
        _check_bounds(self.min_price, self.max_price, self.tick_size, "price")


@dataclass(frozen=True)
class LotFilter:
    min_qty: Decimal
    max_qty: Decimal
    step_size: Decimal

    def __post_init__(self) -> None:
        _check_bounds(self.min_qty, self.max_qty, self.step_size, "lot")


@dataclass(frozen=True)
class ExchangeFilters:
    """Quantization constraints for one trading pair."""
    price: PriceFilter
    lot: LotFilter

    @classmethod
    def from_strings(
        cls,
        min_price: Number,
        max_price: Number,
        tick_size: Number,
        min_qty: Number,
        max_qty: Number,
        step_size: Number,
    ) -> "ExchangeFilters":
        return cls(
            price=PriceFilter(to_decimal(min_price), to_decimal(max_price), to_decimal(tick_size)),
            lot=LotFilter(to_decimal(min_qty), to_decimal(max_qty), to_decimal(step_size)),
        )

    def to_dict(self) -> Dict[str, str]:
        return {
            "min_price": str(self.price.min_price),
            "max_price": str(self.price.max_price),
            "tick_size": str(self.price.tick_size),
            "min_qty": str(self.lot.min_qty),
            "max_qty": str(self.lot.max_qty),
            "step_size": str(self.lot.step_size),
        }


def _check_bounds(minimum: Decimal, maximum: Decimal, step: Decimal, kind: str) -> None:
    if minimum > maximum:
        raise ValueError(f"{kind} filter min {minimum} is above max {maximum}")
    if step <= 0:
        raise ValueError(f"{kind} filter step must be > 0, got {step}")


def apply_filter(amount: Decimal, minimum: Decimal, maximum: Decimal, step: Decimal) -> Decimal:
    """
    Snap amount down onto the [minimum, maximum] grid defined by step.

    Raises:
        InvalidAmount: if amount is below minimum or above maximum
    """
    if amount < minimum or amount > maximum:
        raise InvalidAmount(amount, minimum, maximum)
    steps = ((amount - minimum) / step).to_integral_value(rounding=ROUND_FLOOR)
    result = minimum + steps * step
    if result < minimum:
        return minimum
    if result > maximum:
        return maximum
    return result


def apply_price_filter(price: Decimal, price_filter: PriceFilter) -> Decimal:
    return apply_filter(price, price_filter.min_price, price_filter.max_price, price_filter.tick_size)


def apply_quantity_filter(qty: Decimal, lot_filter: LotFilter) -> Decimal:
    return apply_filter(qty, lot_filter.min_qty, lot_filter.max_qty, lot_filter.step_size)


def is_on_grid(amount: Decimal, minimum: Decimal, step: Decimal) -> bool:
    """True if amount is minimum plus a whole number of steps."""
    if step <= 0:
        return True
    return ((amount - minimum) % step) == 0
