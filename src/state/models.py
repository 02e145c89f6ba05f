"""
Deal/Order aggregate.

A Deal is one trading cycle: a pre-materialized ladder of BUY orders plus the
take-profit SELL orders spawned as buys fill. The Deal owns its Orders; an
Order never moves between deals. Deals keep a snapshot of the StrategyConfig
they were created with so later config edits never touch an in-flight deal.

Sequence numbers:
    0            base order
    1..N         safety orders
    1000 + k     take-profit SELL placed after BUY k filled
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

TAKE_PROFIT_SEQUENCE_OFFSET = 1000


class DealStatus(str, Enum):
    CREATED = "CREATED"
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderStatus(str, Enum):
    """
    Order lifecycle states.

    CREATED ──> NEW ──> PARTIALLY_FILLED ──> FILLED
       │         │             │
       └─────────┴─────────────┴──> CANCELED | REJECTED | EXPIRED
    """
    CREATED = "CREATED"
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELED = "CANCELED"
    REJECTED = "REJECTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_open(self) -> bool:
        """Resting on the exchange book."""
        return self in (OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED)


TERMINAL_STATUSES = frozenset({
    OrderStatus.FILLED,
    OrderStatus.CANCELED,
    OrderStatus.REJECTED,
    OrderStatus.EXPIRED,
})


def _dec(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _str(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(frozen=True)
class StrategyConfig:
    """Immutable DCA strategy parameters supplied at deal creation."""
    pair: str
    base_order_size: Decimal
    safety_order_size: Decimal
    target_profit_percentage: Decimal
    max_safety_trades_count: int
    max_active_safety_trades_count: int
    price_deviation_percentage: Decimal
    safety_order_volume_scale: Decimal
    safety_order_step_scale: Decimal
    strategy: str = "LONG"
    start_order_type: str = "LIMIT"
    deal_start_condition: str = "ASAP"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {k: (str(v) if isinstance(v, Decimal) else v) for k, v in data.items()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StrategyConfig":
        return cls(
            pair=data["pair"],
            base_order_size=Decimal(str(data["base_order_size"])),
            safety_order_size=Decimal(str(data["safety_order_size"])),
            target_profit_percentage=Decimal(str(data["target_profit_percentage"])),
            max_safety_trades_count=int(data["max_safety_trades_count"]),
            max_active_safety_trades_count=int(data.get("max_active_safety_trades_count", 0)),
            price_deviation_percentage=Decimal(str(data["price_deviation_percentage"])),
            safety_order_volume_scale=Decimal(str(data["safety_order_volume_scale"])),
            safety_order_step_scale=Decimal(str(data["safety_order_step_scale"])),
            strategy=data.get("strategy", "LONG"),
            start_order_type=data.get("start_order_type", "LIMIT"),
            deal_start_condition=data.get("deal_start_condition", "ASAP"),
        )


@dataclass
class Order:
    """One exchange order owned by a Deal. The id doubles as the client order id."""
    deal_id: Optional[int]
    sequence: int
    side: OrderSide
    price: Decimal
    quantity: Decimal
    status: OrderStatus = OrderStatus.CREATED
    volume: Optional[Decimal] = None
    deviation: Optional[Decimal] = None
    average_price: Optional[Decimal] = None
    exit_price: Optional[Decimal] = None
    total_quantity: Optional[Decimal] = None
    filled_price: Optional[Decimal] = None
    exchange_order_id: Optional[int] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @property
    def filled_volume(self) -> Decimal:
        if self.status != OrderStatus.FILLED or self.filled_price is None:
            return Decimal(0)
        return self.filled_price * self.quantity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "deal_id": self.deal_id,
            "sequence": self.sequence,
            "side": self.side.value,
            "status": self.status.value,
            "price": _str(self.price),
            "quantity": _str(self.quantity),
            "volume": _str(self.volume),
            "deviation": _str(self.deviation),
            "average_price": _str(self.average_price),
            "exit_price": _str(self.exit_price),
            "total_quantity": _str(self.total_quantity),
            "filled_price": _str(self.filled_price),
            "exchange_order_id": self.exchange_order_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Order":
        return cls(
            id=data["id"],
            deal_id=data.get("deal_id"),
            sequence=int(data["sequence"]),
            side=OrderSide(data["side"]),
            status=OrderStatus(data["status"]),
            price=Decimal(data["price"]),
            quantity=Decimal(data["quantity"]),
            volume=_dec(data.get("volume")),
            deviation=_dec(data.get("deviation")),
            average_price=_dec(data.get("average_price")),
            exit_price=_dec(data.get("exit_price")),
            total_quantity=_dec(data.get("total_quantity")),
            filled_price=_dec(data.get("filled_price")),
            exchange_order_id=data.get("exchange_order_id"),
        )


@dataclass
class Deal:
    """Aggregate root for one trading cycle."""
    config: StrategyConfig
    status: DealStatus = DealStatus.CREATED
    start_at: float = field(default_factory=time.time)
    end_at: Optional[float] = None
    profit: Optional[Decimal] = None
    orders: List[Order] = field(default_factory=list)
    id: Optional[int] = None

    @property
    def pair(self) -> str:
        return self.config.pair

    def buy_orders(self) -> List[Order]:
        return sorted((o for o in self.orders if o.side == OrderSide.BUY), key=lambda o: o.sequence)

    def sell_orders(self) -> List[Order]:
        return sorted((o for o in self.orders if o.side == OrderSide.SELL), key=lambda o: o.sequence)

    def get_order(self, order_id: str) -> Optional[Order]:
        for order in self.orders:
            if order.id == order_id:
                return order
        return None

    def add_order(self, order: Order) -> Order:
        order.deal_id = self.id
        self.orders.append(order)
        return order

    def realized_profit(self) -> Decimal:
        """Sum of filled sell volume minus sum of filled buy volume."""
        sold = sum((o.filled_volume for o in self.sell_orders()), Decimal(0))
        bought = sum((o.filled_volume for o in self.buy_orders()), Decimal(0))
        return sold - bought

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "start_at": self.start_at,
            "end_at": self.end_at,
            "profit": _str(self.profit),
            "config": self.config.to_dict(),
            "orders": [o.to_dict() for o in self.orders],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Deal":
        return cls(
            id=data.get("id"),
            status=DealStatus(data["status"]),
            start_at=float(data["start_at"]),
            end_at=data.get("end_at"),
            profit=_dec(data.get("profit")),
            config=StrategyConfig.from_dict(data["config"]),
            orders=[Order.from_dict(o) for o in data.get("orders", [])],
        )
