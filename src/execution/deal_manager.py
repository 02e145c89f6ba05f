"""
DealManager: Deal lifecycle and order reconciliation.

Owns the life of every deal for one trading pair:
- Creates a deal from the ladder calculator's output (after a balance check)
- Submits the deal's buy orders in ascending sequence
- Applies execution reports and polled order statuses through the order
  state machine
- Replaces the take-profit sell order every time a buy fills
- Closes the deal when its take-profit fills (or every buy died unfilled)

Architecture:
    Every public entry point takes the pair's lock from DealLocks before
    touching storage, so one writer mutates a deal at a time no matter which
    trigger (scheduler tick, pushed report, CLI) called in. Helpers prefixed
    with an underscore assume the lock is held. Deals are passed explicitly
    between helpers; nothing caches a "current deal".

Failure semantics:
    Errors while creating a deal propagate (nothing was persisted yet).
    Exchange errors while placing, cancelling or querying an order are logged
    and absorbed; the order keeps its state and the next pass retries it.
    Reports for unknown orders, unknown deals or non-ACTIVE deals are dropped.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, List, Optional, Set, Tuple, TYPE_CHECKING

from src.bot_logger import DealLogger
from src.core.errors import DealCloseTimeout, ExchangeTransportError, InsufficientFunds, ProtocolViolation
from src.execution.deal_locks import DealLocks
from src.execution.exchange import ExchangeClient, ExecutionReport, SymbolInfo
from src.execution.order_state_machine import OrderStateMachine, TransitionResult, parse_reported_status
from src.state.deal_repository import DealRepository
from src.state.models import (
    TAKE_PROFIT_SEQUENCE_OFFSET,
    Deal,
    DealStatus,
    Order,
    OrderSide,
    OrderStatus,
    StrategyConfig,
)
from src.strategy.ladder_calculator import LadderCalculator, PlannedOrder

if TYPE_CHECKING:
    from src.monitoring.metrics_rich import DealMetrics


@dataclass
class DealManagerConfig:
    """Configuration for DealManager."""
    # Bounded wait for order cancellations while closing a deal
    close_poll_interval_sec: float = 2.0
    close_max_wait_sec: float = 60.0

    # Query open orders on every scheduled pass (covers missed pushed reports)
    poll_open_orders: bool = True

    # Logging callback
    log_event_callback: Optional[Callable[..., None]] = None


class DealManager:
    """
    Reconciliation engine for one trading pair.

    Usage:
        manager = DealManager(strategy, symbol, repository, exchange)

        # scheduler, once a minute
        deal = await manager.run_scheduled_pass()

        # user data stream
        await manager.handle_execution_report(report)
    """

    def __init__(
        self,
        strategy: StrategyConfig,
        symbol: SymbolInfo,
        repository: DealRepository,
        exchange: ExchangeClient,
        locks: Optional[DealLocks] = None,
        metrics: Optional["DealMetrics"] = None,
        config: Optional[DealManagerConfig] = None,
    ) -> None:
        """
        Initialize DealManager.

        Args:
            strategy: Strategy used for new deals (running deals keep their snapshot)
            symbol: Pair metadata and exchange filters
            repository: Deal storage
            exchange: Exchange client
            locks: Shared per-pair locks (a private registry if omitted)
            metrics: Prometheus metrics
            config: Optional configuration
        """
        self.strategy = strategy
        self.symbol = symbol
        self.pair = strategy.pair
        self.repository = repository
        self.exchange = exchange
        self.locks = locks or DealLocks()
        self.metrics = metrics
        self.config = config or DealManagerConfig()
        self.calculator = LadderCalculator(strategy, symbol.filters)

        self._log_event = self.config.log_event_callback or DealLogger(self.pair).log
        self.state_machine = OrderStateMachine(log_event=self._log_event)

        # deals whose close is in progress; fills seen meanwhile spawn nothing
        self._closing: Set[int] = set()

    @property
    def lock(self) -> asyncio.Lock:
        return self.locks.get_lock(self.pair)

    # ========== Public entry points ==========

    async def start_or_continue_deal(self) -> Deal:
        """
        Return the pair's ACTIVE deal, or create, activate and submit a new one.

        Raises:
            InvalidAmount: the ladder does not fit the exchange filters
            InsufficientFunds: the free quote balance cannot cover the ladder
            ExchangeTransportError: price or balance lookup failed
        """
        async with self.lock:
            deal, _ = await self._start_or_continue()
            return deal

    async def run_scheduled_pass(self) -> Deal:
        """
        One periodic reconciliation pass.

        Continues or starts a deal, retries orders that never reached the
        exchange, polls open orders for missed reports and retries a close
        that previously timed out.
        """
        async with self.lock:
            deal, created = await self._start_or_continue()
            if created or deal.id is None:
                return deal

            await self._retry_pending_submissions(deal)
            if self.config.poll_open_orders:
                await self._poll_open_orders(deal)

            current = await self.repository.find_deal(deal.id)
            if current is None:
                return deal
            if current.status == DealStatus.ACTIVE and any(
                o.status == OrderStatus.FILLED for o in current.sell_orders()
            ):
                current = await self._close_deal(current.id) or current
            self._update_open_gauge(current)
            return current

    async def handle_execution_report(self, report: ExecutionReport) -> bool:
        """
        Apply one pushed execution report.

        Returns:
            True if the report changed order state
        """
        async with self.lock:
            order = await self.repository.find_order(report.client_order_id)
            if order is None:
                self._drop_report(report, "report_dropped_missing_order", "missing_order")
                return False

            deal = await self.repository.find_deal(order.deal_id) if order.deal_id is not None else None
            if deal is None:
                self._drop_report(report, "report_dropped_missing_deal", "missing_deal", deal_id=order.deal_id)
                return False
            if deal.status != DealStatus.ACTIVE:
                self._drop_report(report, "report_dropped_stale_deal", "stale_deal", deal_id=deal.id, deal_status=deal.status.value)
                return False

            order = deal.get_order(order.id) or order
            result = await self._apply_status(
                deal,
                order,
                report.status,
                exchange_order_id=report.exchange_order_id,
                price=report.price,
            )
            return result is not None and result.applied

    async def close_deal(self, deal_id: int) -> Optional[Deal]:
        """
        Cancel outstanding orders, wait for confirmation and book the profit.

        Safe to call again on a CLOSED deal (no-op).

        Raises:
            DealCloseTimeout: buys were still open after close_max_wait_sec
        """
        async with self.lock:
            return await self._close_deal(deal_id)

    # ========== Deal creation ==========

    async def _start_or_continue(self) -> Tuple[Deal, bool]:
        active = await self.repository.find_active_deal(self.pair)
        if active is not None:
            return active, False

        self._log_event("deal_none_active")
        ladder = await self._plan_ladder()
        deal = await self._create_deal(ladder)
        deal = await self._activate_deal(deal)
        return deal, True

    async def _plan_ladder(self) -> List[PlannedOrder]:
        current_price = await self.exchange.get_price(self.pair)
        self._log_event("current_price", price=current_price)

        ladder = self.calculator.compute(current_price)
        required = LadderCalculator.required_volume(ladder)
        quote = self.symbol.quote_asset
        available = await self.exchange.get_account_balance(quote)
        if required > available:
            self._log_event("insufficient_funds", asset=quote, required=required, available=available)
            raise InsufficientFunds(quote, required, available)
        return ladder

    async def _create_deal(self, ladder: List[PlannedOrder]) -> Deal:
        deal = Deal(config=self.strategy, status=DealStatus.CREATED)
        for planned in ladder:
            deal.add_order(Order(
                deal_id=None,
                sequence=planned.sequence,
                side=OrderSide.BUY,
                price=planned.price,
                quantity=planned.quantity,
                volume=planned.volume,
                deviation=planned.deviation,
                average_price=planned.average_price,
                exit_price=planned.exit_price,
                total_quantity=planned.total_quantity,
            ))
        deal = await self.repository.save_deal(deal)
        self._log_event(
            "deal_created",
            deal_id=deal.id,
            orders=len(ladder),
            required_volume=LadderCalculator.required_volume(ladder),
        )
        return deal

    async def _activate_deal(self, deal: Deal) -> Deal:
        deal.status = DealStatus.ACTIVE
        deal = await self.repository.save_deal(deal)
        if self.metrics:
            self.metrics.deals_opened.labels(pair=self.pair).inc()
        self._log_event("deal_activated", deal_id=deal.id)

        await self._submit_buy_orders(deal)
        refreshed = await self.repository.find_deal(deal.id)
        return refreshed or deal

    # ========== Submission ==========

    async def _submit_buy_orders(self, deal: Deal) -> None:
        """
        Submit CREATED buy orders in ascending sequence.

        Respects the deal's cap on concurrently open safety orders. A failed
        placement is logged and the loop moves on to the next order.
        """
        limit = deal.config.max_active_safety_trades_count
        for order in deal.buy_orders():
            if deal.status != DealStatus.ACTIVE or deal.id in self._closing:
                return
            if order.status != OrderStatus.CREATED or order.exchange_order_id is not None:
                continue
            if order.sequence > 0 and limit > 0 and self._open_safety_count(deal) >= limit:
                break
            await self._place_order(deal, order)

    async def _retry_pending_submissions(self, deal: Deal) -> None:
        await self._submit_buy_orders(deal)

        # at most one take-profit is live; only the newest one is worth placing
        sells = deal.sell_orders()
        if not sells:
            return
        newest = sells[-1]
        for stale in sells[:-1]:
            if stale.status.is_open or stale.status == OrderStatus.CREATED:
                await self._cancel_order(deal, stale, reason="stale_take_profit")

        if any(o.status.is_open for o in deal.sell_orders()):
            return
        current = await self.repository.find_deal(deal.id)
        if current is None or current.status != DealStatus.ACTIVE:
            return
        if newest.status == OrderStatus.CREATED and newest.exchange_order_id is None:
            await self._place_order(deal, newest)

    async def _place_order(self, deal: Deal, order: Order) -> bool:
        try:
            placed = await self.exchange.place_limit_order(
                order.id, order.side, self.pair, order.price, order.quantity
            )
        except ExchangeTransportError as exc:
            self._log_event(
                "order_submit_error",
                deal_id=deal.id,
                order_id=order.id,
                side=order.side.value,
                sequence=order.sequence,
                price=order.price,
                quantity=order.quantity,
                error=str(exc),
            )
            if self.metrics:
                self.metrics.order_submit_errors.labels(pair=self.pair, side=order.side.value).inc()
            return False

        if self.metrics:
            self.metrics.orders_submitted.labels(pair=self.pair, side=order.side.value).inc()
        self._log_event(
            "order_submitted",
            deal_id=deal.id,
            order_id=order.id,
            exchange_order_id=placed.exchange_order_id,
            side=order.side.value,
            sequence=order.sequence,
            price=order.price,
            quantity=order.quantity,
            status=placed.status,
        )
        await self._apply_status(
            deal, order, placed.status, exchange_order_id=placed.exchange_order_id, price=placed.price
        )
        return True

    def _open_safety_count(self, deal: Deal) -> int:
        return sum(
            1 for o in deal.buy_orders()
            if o.sequence > 0 and (o.status.is_open or (o.status == OrderStatus.CREATED and o.exchange_order_id is not None))
        )

    # ========== Transitions ==========

    async def _apply_status(
        self,
        deal: Deal,
        order: Order,
        raw_status: Any,
        exchange_order_id: Optional[int] = None,
        price: Optional[Decimal] = None,
    ) -> Optional[TransitionResult]:
        """
        Route a reported status for order through the state machine and run
        its side effects. Returns None for protocol violations.
        """
        try:
            status = parse_reported_status(raw_status)
        except ProtocolViolation as exc:
            self._log_event(
                "report_protocol_violation",
                deal_id=deal.id,
                order_id=order.id,
                status=str(raw_status),
                error=str(exc),
            )
            if self.metrics:
                self.metrics.reports_dropped.labels(pair=self.pair, reason="protocol_violation").inc()
            return None

        closing = deal.id in self._closing

        if (
            order.side == OrderSide.BUY
            and status == OrderStatus.FILLED
            and not closing
            and self.state_machine.can_transition(order, status)
        ):
            return await self._on_buy_filled(deal, order, exchange_order_id, price)

        result = self.state_machine.apply(order, status, exchange_order_id=exchange_order_id, price=price)
        if not result.applied:
            if result.reason == "duplicate":
                self._log_event("report_duplicate", order_id=order.id, status=status.value)
            return result

        await self.repository.save_order(order)
        self._record_applied(order, result)
        self._log_event(
            "order_status",
            deal_id=deal.id,
            order_id=order.id,
            exchange_order_id=order.exchange_order_id,
            side=order.side.value,
            sequence=order.sequence,
            status=status.value,
            price=price,
            quantity=order.quantity,
        )

        if closing:
            return result
        if order.side == OrderSide.SELL and status == OrderStatus.FILLED:
            await self._close_deal(deal.id)
        elif order.side == OrderSide.BUY and status.is_terminal:
            await self._close_if_all_buys_dead(deal)
        return result

    async def _on_buy_filled(
        self,
        deal: Deal,
        order: Order,
        exchange_order_id: Optional[int],
        price: Optional[Decimal],
    ) -> TransitionResult:
        """
        A buy filled: retire the old take-profit, mark the fill and place a
        new take-profit sized to the cumulative quantity at this buy's exit price.
        """
        for sell in deal.sell_orders():
            if sell.status.is_open or sell.status == OrderStatus.CREATED:
                await self._cancel_order(deal, sell, reason="stale_take_profit")

        # a take-profit already sold the position (possibly before its cancel landed)
        current = await self.repository.find_deal(deal.id)
        spawn = (
            current is not None
            and current.status == DealStatus.ACTIVE
            and not any(s.status == OrderStatus.FILLED for s in deal.sell_orders())
        )

        result = self.state_machine.apply(order, OrderStatus.FILLED, exchange_order_id=exchange_order_id, price=price)
        await self.repository.save_order(order)
        self._record_applied(order, result)
        self._log_event(
            "buy_filled",
            deal_id=deal.id,
            order_id=order.id,
            exchange_order_id=order.exchange_order_id,
            sequence=order.sequence,
            price=order.filled_price,
            quantity=order.quantity,
        )
        if not spawn:
            return result

        exit_price = order.exit_price if order.exit_price is not None else order.price
        total_quantity = order.total_quantity if order.total_quantity is not None else order.quantity
        sell = deal.add_order(Order(
            deal_id=deal.id,
            sequence=TAKE_PROFIT_SEQUENCE_OFFSET + order.sequence,
            side=OrderSide.SELL,
            price=exit_price,
            quantity=total_quantity,
            volume=exit_price * total_quantity,
            average_price=order.average_price,
            total_quantity=total_quantity,
        ))
        await self.repository.save_order(sell)
        self._log_event(
            "take_profit_created",
            deal_id=deal.id,
            order_id=sell.id,
            sequence=sell.sequence,
            price=sell.price,
            quantity=sell.quantity,
        )
        await self._place_order(deal, sell)

        if deal.config.max_active_safety_trades_count > 0:
            await self._submit_buy_orders(deal)
        return result

    async def _cancel_order(self, deal: Deal, order: Order, reason: str) -> None:
        if self.metrics:
            self.metrics.orders_cancelled.labels(pair=self.pair, reason=reason).inc()

        if order.exchange_order_id is None:
            # never reached the exchange; retire it locally
            result = self.state_machine.apply(order, OrderStatus.CANCELED)
            if result.applied:
                await self.repository.save_order(order)
                self._log_event("order_cancelled_local", deal_id=deal.id, order_id=order.id, reason=reason)
            return

        try:
            snapshot = await self.exchange.cancel_order(self.pair, order.exchange_order_id)
        except ExchangeTransportError as exc:
            self._log_event(
                "cancel_error",
                deal_id=deal.id,
                order_id=order.id,
                exchange_order_id=order.exchange_order_id,
                reason=reason,
                error=str(exc),
            )
            return

        self._log_event(
            "order_cancel_sent",
            deal_id=deal.id,
            order_id=order.id,
            exchange_order_id=order.exchange_order_id,
            side=order.side.value,
            reason=reason,
            status=snapshot.status,
        )
        await self._apply_status(deal, order, snapshot.status, price=snapshot.price)

    async def _refresh_order(self, deal: Deal, order: Order) -> None:
        if order.exchange_order_id is None:
            return
        try:
            snapshot = await self.exchange.get_order(self.pair, order.exchange_order_id)
        except ExchangeTransportError as exc:
            self._log_event(
                "order_query_error",
                deal_id=deal.id,
                order_id=order.id,
                exchange_order_id=order.exchange_order_id,
                error=str(exc),
            )
            return
        self._log_event("order_poll", order_id=order.id, status=snapshot.status)
        if str(snapshot.status).upper() != order.status.value:
            await self._apply_status(deal, order, snapshot.status, price=snapshot.price)

    async def _poll_open_orders(self, deal: Deal) -> None:
        for order in sorted(deal.orders, key=lambda o: o.sequence):
            if not order.status.is_open:
                continue
            await self._refresh_order(deal, order)
            current = await self.repository.find_deal(deal.id)
            if current is None or current.status != DealStatus.ACTIVE:
                return

    # ========== Closing ==========

    async def _close_if_all_buys_dead(self, deal: Deal) -> None:
        buys = deal.buy_orders()
        if buys and all(o.status.is_terminal for o in buys) and not any(
            o.status == OrderStatus.FILLED for o in buys
        ):
            self._log_event("deal_all_buys_dead", deal_id=deal.id)
            await self._close_deal(deal.id)

    async def _close_deal(self, deal_id: int) -> Optional[Deal]:
        deal = await self.repository.find_deal(deal_id)
        if deal is None:
            self._log_event("deal_not_found", deal_id=deal_id)
            return None
        if deal.status == DealStatus.CLOSED:
            return deal

        self._closing.add(deal_id)
        try:
            for order in deal.buy_orders() + deal.sell_orders():
                if order.status == OrderStatus.CREATED or order.status.is_open:
                    await self._cancel_order(deal, order, reason="deal_close")

            deal = await self._wait_for_orders_settled(deal_id)

            profit = deal.realized_profit()
            deal.status = DealStatus.CLOSED
            deal.end_at = time.time()
            deal.profit = profit
            deal = await self.repository.save_deal(deal)
        finally:
            self._closing.discard(deal_id)

        if self.metrics:
            self.metrics.deals_closed.labels(pair=self.pair).inc()
            self.metrics.last_deal_profit.labels(pair=self.pair).set(float(profit))
            self.metrics.realized_profit.labels(pair=self.pair).inc(float(profit))
            self.metrics.open_buy_orders.labels(pair=self.pair).set(0)
        self._log_event("deal_closed", deal_id=deal.id, profit=profit)
        return deal

    async def _wait_for_orders_settled(self, deal_id: int) -> Deal:
        """
        Poll until no order of the deal is still open on the exchange.

        Cancel confirmations arrive asynchronously, so each round re-queries
        the open orders and re-reads the deal.

        Raises:
            DealCloseTimeout: close_max_wait_sec elapsed
        """
        started = time.monotonic()
        while True:
            deal = await self.repository.find_deal(deal_id)
            if deal is None:
                raise DealCloseTimeout(deal_id, time.monotonic() - started)
            open_orders = [o for o in deal.orders if o.status.is_open]
            if not open_orders:
                return deal

            waited = time.monotonic() - started
            if waited >= self.config.close_max_wait_sec:
                self._log_event(
                    "deal_close_timeout",
                    deal_id=deal_id,
                    waited_sec=round(waited, 3),
                    open_orders=[o.id for o in open_orders],
                )
                raise DealCloseTimeout(deal_id, waited)

            self._log_event("deal_close_wait", deal_id=deal_id, open_orders=len(open_orders))
            await asyncio.sleep(self.config.close_poll_interval_sec)
            for order in open_orders:
                await self._refresh_order(deal, order)

    # ========== Bookkeeping ==========

    def _drop_report(self, report: ExecutionReport, event: str, reason: str, **extra: Any) -> None:
        self._log_event(
            event,
            client_order_id=report.client_order_id,
            exchange_order_id=report.exchange_order_id,
            status=report.status,
            **extra,
        )
        if self.metrics:
            self.metrics.reports_dropped.labels(pair=self.pair, reason=reason).inc()

    def _record_applied(self, order: Order, result: TransitionResult) -> None:
        if self.metrics and result.applied:
            self.metrics.reports_applied.labels(
                pair=self.pair, side=order.side.value, status=result.to_status.value
            ).inc()

    def _update_open_gauge(self, deal: Deal) -> None:
        if self.metrics:
            open_buys = sum(1 for o in deal.buy_orders() if o.status.is_open)
            self.metrics.open_buy_orders.labels(pair=self.pair).set(open_buys)
