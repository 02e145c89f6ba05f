"""
Console tables for planned ladders and live deals (rich).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Iterable, List, Optional

from rich.console import Console
from rich.table import Table

from src.state.models import Deal, Order, OrderStatus
from src.strategy.ladder_calculator import PlannedOrder

LADDER_COLUMNS = (
    "sequence", "deviation", "quantity", "volume", "price",
    "averagePrice", "exitPrice", "totalQuantity",
)

_STATUS_STYLE = {
    OrderStatus.FILLED: "green",
    OrderStatus.NEW: "cyan",
    OrderStatus.PARTIALLY_FILLED: "yellow",
    OrderStatus.CANCELED: "dim",
    OrderStatus.REJECTED: "red",
    OrderStatus.EXPIRED: "dim",
}


def _fmt(value: Optional[Decimal], places: int = 8) -> str:
    if value is None:
        return "-"
    text = f"{value:.{places}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def ladder_table(ladder: Iterable[PlannedOrder], title: str = "Planned ladder") -> Table:
    table = Table(title=title)
    for name in LADDER_COLUMNS:
        table.add_column(name, justify="right")
    for planned in ladder:
        table.add_row(
            str(planned.sequence),
            _fmt(planned.deviation, 4),
            _fmt(planned.quantity),
            _fmt(planned.volume),
            _fmt(planned.price),
            _fmt(planned.average_price),
            _fmt(planned.exit_price),
            _fmt(planned.total_quantity),
        )
    return table


def deal_table(deal: Deal) -> Table:
    """One row per order, buys first then take-profits."""
    profit = f" profit={_fmt(deal.profit)}" if deal.profit is not None else ""
    table = Table(title=f"Deal {deal.id} {deal.pair} [{deal.status.value}]{profit}")
    for name in ("side", "status") + LADDER_COLUMNS + ("filledPrice", "exchangeId"):
        table.add_column(name, justify="right")

    orders: List[Order] = deal.buy_orders() + deal.sell_orders()
    for order in orders:
        style = _STATUS_STYLE.get(order.status)
        table.add_row(
            order.side.value,
            order.status.value,
            str(order.sequence),
            _fmt(order.deviation, 4),
            _fmt(order.quantity),
            _fmt(order.volume),
            _fmt(order.price),
            _fmt(order.average_price),
            _fmt(order.exit_price),
            _fmt(order.total_quantity),
            _fmt(order.filled_price),
            str(order.exchange_order_id) if order.exchange_order_id is not None else "-",
            style=style,
        )
    return table


def print_ladder(ladder: Iterable[PlannedOrder], console: Optional[Console] = None) -> None:
    (console or Console()).print(ladder_table(ladder))


def print_deal(deal: Deal, console: Optional[Console] = None) -> None:
    (console or Console()).print(deal_table(deal))
