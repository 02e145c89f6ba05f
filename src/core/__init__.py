"""
Core utilities package.

This package contains the error taxonomy, exchange filter quantization and
JSON helpers.
"""

from src.core.errors import (
    DcaBotError,
    DealCloseTimeout,
    DealConflictError,
    ExchangeTransportError,
    InsufficientFunds,
    InvalidAmount,
    ProtocolViolation,
    StaleOrMissingReference,
)
from src.core.filters import (
    ExchangeFilters,
    LotFilter,
    PriceFilter,
    apply_filter,
    apply_price_filter,
    apply_quantity_filter,
)
from src.core.json_utils import dumps, loads

__all__ = [
    "DcaBotError",
    "DealCloseTimeout",
    "DealConflictError",
    "ExchangeTransportError",
    "InsufficientFunds",
    "InvalidAmount",
    "ProtocolViolation",
    "StaleOrMissingReference",
    "ExchangeFilters",
    "LotFilter",
    "PriceFilter",
    "apply_filter",
    "apply_price_filter",
    "apply_quantity_filter",
    "dumps",
    "loads",
]
