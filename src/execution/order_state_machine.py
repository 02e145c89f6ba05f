"""
Order State Machine - Guarded order lifecycle transitions.

Every status change of a persisted Order goes through OrderStateMachine.apply(),
which consults one transition table keyed by (side, reported status):

- BUY NEW:      only from CREATED (a repeated NEW is a no-op)
- BUY FILLED:   only from CREATED, NEW or PARTIALLY_FILLED
- BUY others:   PARTIALLY_FILLED / CANCELED / REJECTED / EXPIRED copied from
                any non-terminal status
- SELL any:     copied from any non-terminal status

Terminal orders (FILLED, CANCELED, REJECTED, EXPIRED) never change again, so
duplicated or reordered execution reports cannot double-process a fill.

Unknown status strings raise ProtocolViolation from parse_reported_status().
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Dict, FrozenSet, Optional, Tuple

from src.core.errors import ProtocolViolation
from src.core.json_utils import dumps
from src.state.models import Order, OrderSide, OrderStatus

log = logging.getLogger("dcabot")

_NON_TERMINAL: FrozenSet[OrderStatus] = frozenset({
    OrderStatus.CREATED,
    OrderStatus.NEW,
    OrderStatus.PARTIALLY_FILLED,
})

# (side, reported status) -> statuses the order may currently be in
VALID_TRANSITIONS: Dict[Tuple[OrderSide, OrderStatus], FrozenSet[OrderStatus]] = {
    (OrderSide.BUY, OrderStatus.NEW): frozenset({OrderStatus.CREATED, OrderStatus.NEW}),
    (OrderSide.BUY, OrderStatus.FILLED): _NON_TERMINAL,
    (OrderSide.BUY, OrderStatus.PARTIALLY_FILLED): _NON_TERMINAL,
    (OrderSide.BUY, OrderStatus.CANCELED): _NON_TERMINAL,
    (OrderSide.BUY, OrderStatus.REJECTED): _NON_TERMINAL,
    (OrderSide.BUY, OrderStatus.EXPIRED): _NON_TERMINAL,
    (OrderSide.SELL, OrderStatus.NEW): _NON_TERMINAL,
    (OrderSide.SELL, OrderStatus.FILLED): _NON_TERMINAL,
    (OrderSide.SELL, OrderStatus.PARTIALLY_FILLED): _NON_TERMINAL,
    (OrderSide.SELL, OrderStatus.CANCELED): _NON_TERMINAL,
    (OrderSide.SELL, OrderStatus.REJECTED): _NON_TERMINAL,
    (OrderSide.SELL, OrderStatus.EXPIRED): _NON_TERMINAL,
}

# Exchange spellings that map onto a known status
_STATUS_ALIASES: Dict[str, OrderStatus] = {
    "EXPIRED_IN_MATCH": OrderStatus.EXPIRED,
    "CANCELLED": OrderStatus.CANCELED,
}


def parse_reported_status(raw: Any) -> OrderStatus:
    """
    Map an exchange status value onto OrderStatus.

    Raises:
        ProtocolViolation: for values the exchange should never report
    """
    if isinstance(raw, OrderStatus):
        status = raw
    else:
        text = str(raw).upper()
        status = _STATUS_ALIASES.get(text)
        if status is None:
            try:
                status = OrderStatus(text)
            except ValueError:
                raise ProtocolViolation(f"Invalid order status {raw!r}") from None
    if status == OrderStatus.CREATED:
        raise ProtocolViolation("Exchange cannot report CREATED")
    return status


@dataclass
class TransitionResult:
    """Outcome of one transition attempt."""
    applied: bool
    from_status: OrderStatus
    to_status: OrderStatus
    reason: str = ""

    @property
    def became_filled(self) -> bool:
        return self.applied and self.to_status == OrderStatus.FILLED


class OrderStateMachine:
    """
    Applies reported statuses to Orders through the transition table.

    Mutates the Order in place; persisting it is the caller's job.
    Thread-safety: callers serialize per deal (see DealLocks).
    """

    def __init__(self, log_event: Optional[Callable[..., None]] = None) -> None:
        self._log_event = log_event or self._default_log
        self._stats = {
            "applied": 0,
            "duplicates": 0,
            "invalid_transitions_blocked": 0,
            "total_filled": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.info(dumps({"event": event, **kwargs}))

    def can_transition(self, order: Order, to_status: OrderStatus) -> bool:
        allowed = VALID_TRANSITIONS.get((order.side, to_status), frozenset())
        return order.status in allowed

    def apply(
        self,
        order: Order,
        reported: OrderStatus,
        exchange_order_id: Optional[int] = None,
        price: Optional[Decimal] = None,
    ) -> TransitionResult:
        """
        Attempt to move order to the reported status.

        Args:
            order: Order to update (mutated on success)
            reported: Parsed reported status
            exchange_order_id: Exchange id carried by the report, recorded when present
            price: Report price, recorded as the fill price on FILLED

        Returns:
            TransitionResult, applied=False when the table blocks the move
        """
        from_status = order.status

        if from_status == reported and not reported.is_terminal:
            self._stats["duplicates"] += 1
            if exchange_order_id is not None and order.exchange_order_id is None:
                order.exchange_order_id = exchange_order_id
                return TransitionResult(True, from_status, reported, "exchange_id_recorded")
            return TransitionResult(False, from_status, reported, "duplicate")

        if not self.can_transition(order, reported):
            self._stats["invalid_transitions_blocked"] += 1
            self._log_event(
                "transition_ignored",
                order_id=order.id,
                side=order.side.value,
                sequence=order.sequence,
                from_status=from_status.value,
                to_status=reported.value,
            )
            return TransitionResult(False, from_status, reported, "blocked")

        order.status = reported
        if exchange_order_id is not None:
            order.exchange_order_id = exchange_order_id
        if reported == OrderStatus.FILLED:
            order.filled_price = price if price is not None and price > 0 else order.price
            self._stats["total_filled"] += 1
        self._stats["applied"] += 1

        log.debug(dumps({
            "event": "order_transition",
            "order_id": order.id,
            "from_status": from_status.value,
            "to_status": reported.value,
        }))
        return TransitionResult(True, from_status, reported, "applied")

    def get_stats(self) -> Dict[str, Any]:
        return dict(self._stats)
