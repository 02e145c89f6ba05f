"""
Exchange collaborator contract.

DealManager only talks to the exchange through ExchangeClient. Implementations
raise ExchangeTransportError for any network or API failure; statuses are
returned as the exchange spells them and parsed by the order state machine.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from src.core.filters import ExchangeFilters
from src.state.models import OrderSide


@dataclass(frozen=True)
class SymbolInfo:
    pair: str
    base_asset: str
    quote_asset: str
    filters: ExchangeFilters


@dataclass(frozen=True)
class PlacedOrder:
    """Exchange acknowledgement of a new limit order."""
    exchange_order_id: int
    status: str
    price: Decimal


@dataclass(frozen=True)
class OrderSnapshot:
    """Result of querying or cancelling an order."""
    exchange_order_id: int
    status: str
    price: Decimal


@dataclass(frozen=True)
class ExecutionReport:
    """Exchange-pushed order status change."""
    client_order_id: str
    exchange_order_id: Optional[int]
    side: str
    status: str
    price: Decimal
    quantity: Decimal


class ExchangeClient(Protocol):
    async def get_price(self, pair: str) -> Decimal: ...

    async def get_account_balance(self, asset: str) -> Decimal: ...

    async def get_symbol_info(self, pair: str) -> SymbolInfo: ...

    async def place_limit_order(
        self,
        client_order_id: str,
        side: OrderSide,
        pair: str,
        price: Decimal,
        quantity: Decimal,
    ) -> PlacedOrder: ...

    async def cancel_order(self, pair: str, exchange_order_id: int) -> OrderSnapshot: ...

    async def get_order(self, pair: str, exchange_order_id: int) -> OrderSnapshot: ...
