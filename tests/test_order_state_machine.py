"""
Tests for OrderStateMachine transition guards.
"""
from decimal import Decimal

import pytest

from src.core.errors import ProtocolViolation
from src.execution.order_state_machine import OrderStateMachine, parse_reported_status
from src.state.models import Order, OrderSide, OrderStatus


def make_order(side=OrderSide.BUY, status=OrderStatus.CREATED, exchange_order_id=None):
    return Order(
        deal_id=1,
        sequence=0,
        side=side,
        price=Decimal("100"),
        quantity=Decimal("1"),
        status=status,
        exchange_order_id=exchange_order_id,
    )


class TestParseReportedStatus:
    @pytest.mark.parametrize("raw,expected", [
        ("NEW", OrderStatus.NEW),
        ("partially_filled", OrderStatus.PARTIALLY_FILLED),
        ("FILLED", OrderStatus.FILLED),
        ("CANCELED", OrderStatus.CANCELED),
        ("CANCELLED", OrderStatus.CANCELED),
        ("EXPIRED_IN_MATCH", OrderStatus.EXPIRED),
        (OrderStatus.REJECTED, OrderStatus.REJECTED),
    ])
    def test_known_statuses(self, raw, expected):
        assert parse_reported_status(raw) == expected

    @pytest.mark.parametrize("raw", ["PENDING_CANCEL", "BOGUS", "", "CREATED"])
    def test_unknown_statuses_rejected(self, raw):
        with pytest.raises(ProtocolViolation):
            parse_reported_status(raw)


class TestBuyTransitions:
    def test_created_to_new_records_exchange_id(self):
        sm = OrderStateMachine()
        order = make_order()
        result = sm.apply(order, OrderStatus.NEW, exchange_order_id=42)
        assert result.applied
        assert order.status == OrderStatus.NEW
        assert order.exchange_order_id == 42

    def test_repeated_new_is_noop(self):
        sm = OrderStateMachine()
        order = make_order(status=OrderStatus.NEW, exchange_order_id=42)
        result = sm.apply(order, OrderStatus.NEW, exchange_order_id=42)
        assert not result.applied
        assert result.reason == "duplicate"

    def test_repeated_new_fills_in_missing_exchange_id(self):
        sm = OrderStateMachine()
        order = make_order(status=OrderStatus.NEW)
        result = sm.apply(order, OrderStatus.NEW, exchange_order_id=7)
        assert result.applied
        assert result.reason == "exchange_id_recorded"
        assert order.exchange_order_id == 7

    def test_new_after_partial_fill_blocked(self):
        sm = OrderStateMachine()
        order = make_order(status=OrderStatus.PARTIALLY_FILLED)
        assert not sm.apply(order, OrderStatus.NEW).applied
        assert order.status == OrderStatus.PARTIALLY_FILLED

    @pytest.mark.parametrize("start", [OrderStatus.CREATED, OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED])
    def test_fill_from_live_states(self, start):
        sm = OrderStateMachine()
        order = make_order(status=start)
        result = sm.apply(order, OrderStatus.FILLED, price=Decimal("99.5"))
        assert result.became_filled
        assert order.filled_price == Decimal("99.5")

    def test_fill_without_price_uses_order_price(self):
        sm = OrderStateMachine()
        order = make_order(status=OrderStatus.NEW)
        sm.apply(order, OrderStatus.FILLED, price=Decimal("0"))
        assert order.filled_price == Decimal("100")

    def test_second_fill_blocked(self):
        log_calls = []
        sm = OrderStateMachine(log_event=lambda event, **kw: log_calls.append(event))
        order = make_order(status=OrderStatus.NEW)
        assert sm.apply(order, OrderStatus.FILLED).applied
        result = sm.apply(order, OrderStatus.FILLED)
        assert not result.applied
        assert result.reason == "blocked"
        assert "transition_ignored" in log_calls
        assert sm.get_stats()["total_filled"] == 1

    @pytest.mark.parametrize("terminal", [
        OrderStatus.FILLED, OrderStatus.CANCELED, OrderStatus.REJECTED, OrderStatus.EXPIRED,
    ])
    def test_terminal_orders_never_move(self, terminal):
        sm = OrderStateMachine()
        order = make_order(status=terminal)
        for target in (OrderStatus.NEW, OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED, OrderStatus.CANCELED):
            if target == terminal:
                continue
            assert not sm.apply(order, target).applied
        assert order.status == terminal

    def test_cancel_from_new(self):
        sm = OrderStateMachine()
        order = make_order(status=OrderStatus.NEW)
        assert sm.apply(order, OrderStatus.CANCELED).applied
        assert order.status == OrderStatus.CANCELED
        assert order.filled_price is None


class TestSellTransitions:
    def test_created_to_new(self):
        sm = OrderStateMachine()
        order = make_order(side=OrderSide.SELL)
        assert sm.apply(order, OrderStatus.NEW, exchange_order_id=9).applied
        assert order.exchange_order_id == 9

    def test_fill_then_cancel_blocked(self):
        sm = OrderStateMachine()
        order = make_order(side=OrderSide.SELL, status=OrderStatus.NEW)
        assert sm.apply(order, OrderStatus.FILLED, price=Decimal("101")).applied
        assert not sm.apply(order, OrderStatus.CANCELED).applied
        assert order.status == OrderStatus.FILLED

    def test_stats(self):
        sm = OrderStateMachine()
        order = make_order(side=OrderSide.SELL)
        sm.apply(order, OrderStatus.NEW)
        sm.apply(order, OrderStatus.NEW)
        stats = sm.get_stats()
        assert stats["applied"] == 1
        assert stats["duplicates"] == 1
