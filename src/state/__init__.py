"""
State management package.

This package contains the Deal/Order aggregate and deal persistence.
"""

from src.state.models import (
    Deal,
    DealStatus,
    Order,
    OrderSide,
    OrderStatus,
    StrategyConfig,
    TAKE_PROFIT_SEQUENCE_OFFSET,
)
from src.state.deal_repository import DealRepository, InMemoryDealRepository, JsonDealRepository

__all__ = [
    "Deal",
    "DealStatus",
    "Order",
    "OrderSide",
    "OrderStatus",
    "StrategyConfig",
    "TAKE_PROFIT_SEQUENCE_OFFSET",
    "DealRepository",
    "InMemoryDealRepository",
    "JsonDealRepository",
]
