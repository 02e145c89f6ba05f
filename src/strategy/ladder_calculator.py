"""
LadderCalculator - Pure DCA ladder computation.

Turns a current market price, a StrategyConfig and the pair's exchange filters
into the ordered list of buy orders for one deal:
- Base order at the current price sized from the base order notional
- Safety orders at geometrically growing deviations below the current price
- Safety order notionals growing geometrically by the volume scale
- Running totals, volume-weighted average entry and take-profit exit price

Every price and quantity is quantized before anything is derived from it, so
the running totals only ever contain exchange-representable values.

This is a pure calculation module with no I/O. The balance check against the
ladder's total volume belongs to the caller (see DealManager).
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List

from src.core.filters import ExchangeFilters, apply_price_filter, apply_quantity_filter
from src.state.models import StrategyConfig

ONE = Decimal(1)
HUNDRED = Decimal(100)


@dataclass(frozen=True)
class PlannedOrder:
    """One rung of the ladder. Transient: it seeds a persisted Order."""
    sequence: int
    deviation: Decimal  # percent below the current price, for display
    price: Decimal
    quantity: Decimal
    volume: Decimal
    total_quantity: Decimal
    total_volume: Decimal
    average_price: Decimal
    exit_price: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "deviation": str(self.deviation),
            "price": str(self.price),
            "quantity": str(self.quantity),
            "volume": str(self.volume),
            "total_quantity": str(self.total_quantity),
            "total_volume": str(self.total_volume),
            "average_price": str(self.average_price),
            "exit_price": str(self.exit_price),
        }


def cumulative_deviation(price_deviation: Decimal, step_scale: Decimal, k: int) -> Decimal:
    """
    Fractional drop of safety order k below the start price.

    Geometric series price_deviation * (1 + s + s^2 + ... + s^(k-1)).
    A step scale of exactly 1 degenerates to linear accumulation.
    """
    if step_scale == ONE:
        return price_deviation * k
    return price_deviation * (ONE - step_scale ** k) / (ONE - step_scale)


def compute_ladder(
    current_price: Decimal,
    config: StrategyConfig,
    filters: ExchangeFilters,
) -> List[PlannedOrder]:
    """
    Compute the full buy ladder for a new deal.

    Args:
        current_price: Market price, assumed already valid for the price filter
        config: Strategy parameters
        filters: Price and lot quantization rules for the pair

    Returns:
        max_safety_trades_count + 1 planned orders, sequence 0 first

    Raises:
        InvalidAmount: if any price or quantity leaves its filter bounds
    """
    target_profit = config.target_profit_percentage / HUNDRED
    price_deviation = config.price_deviation_percentage / HUNDRED
    volume_scale = config.safety_order_volume_scale
    step_scale = config.safety_order_step_scale

    quantity = apply_quantity_filter(config.base_order_size / current_price, filters.lot)
    volume = current_price * quantity
    orders: List[PlannedOrder] = [
        PlannedOrder(
            sequence=0,
            deviation=Decimal(0),
            price=current_price,
            quantity=quantity,
            volume=volume,
            total_quantity=quantity,
            total_volume=volume,
            average_price=current_price,
            exit_price=apply_price_filter(current_price * (ONE + target_profit), filters.price),
        )
    ]

    for k in range(1, config.max_safety_trades_count + 1):
        raw_volume = config.safety_order_size * volume_scale ** (k - 1)
        deviation = cumulative_deviation(price_deviation, step_scale, k)
        price = apply_price_filter(current_price * (ONE - deviation), filters.price)
        quantity = apply_quantity_filter(raw_volume / price, filters.lot)
        revised_volume = price * quantity

        prev = orders[-1]
        total_volume = prev.total_volume + revised_volume
        total_quantity = prev.total_quantity + quantity
        average_price = total_volume / total_quantity

        orders.append(
            PlannedOrder(
                sequence=k,
                deviation=deviation * HUNDRED,
                price=price,
                quantity=quantity,
                volume=revised_volume,
                total_quantity=total_quantity,
                total_volume=total_volume,
                average_price=average_price,
                exit_price=apply_price_filter(average_price * (ONE + target_profit), filters.price),
            )
        )

    return orders


class LadderCalculator:
    """
    Ladder computation bound to one strategy config and one pair's filters.

    Thread-safety: stateless apart from immutable configuration.
    """

    def __init__(self, config: StrategyConfig, filters: ExchangeFilters) -> None:
        self.config = config
        self.filters = filters

    def compute(self, current_price: Decimal) -> List[PlannedOrder]:
        return compute_ladder(current_price, self.config, self.filters)

    @staticmethod
    def required_volume(ladder: List[PlannedOrder]) -> Decimal:
        """Quote amount committed if every rung fills."""
        if not ladder:
            return Decimal(0)
        return ladder[-1].total_volume

    def max_deviation_pct(self) -> Decimal:
        """Deviation of the deepest safety order, in percent."""
        return cumulative_deviation(
            self.config.price_deviation_percentage / HUNDRED,
            self.config.safety_order_step_scale,
            self.config.max_safety_trades_count,
        ) * HUNDRED

    def get_state(self) -> Dict[str, Any]:
        return {
            "config": self.config.to_dict(),
            "filters": self.filters.to_dict(),
        }
