"""
Prometheus metrics for the DCA bot.

Organized into: execution, reports, deals.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge


class DealMetrics:
    """Deal and order lifecycle metrics."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === Execution Metrics ===
        self.orders_submitted = Counter(
            'orders_submitted_total',
            'Orders accepted by the exchange',
            labelnames=['pair', 'side'],
            registry=reg
        )
        self.order_submit_errors = Counter(
            'order_submit_errors_total',
            'Order placements that failed',
            labelnames=['pair', 'side'],
            registry=reg
        )
        self.orders_cancelled = Counter(
            'orders_cancelled_total',
            'Cancel requests sent',
            labelnames=['pair', 'reason'],
            registry=reg
        )
        self.open_buy_orders = Gauge(
            'open_buy_orders',
            'Buy orders resting on the exchange for the active deal',
            labelnames=['pair'],
            registry=reg
        )

        # === Report Metrics ===
        self.reports_applied = Counter(
            'execution_reports_applied_total',
            'Execution reports that changed order state',
            labelnames=['pair', 'side', 'status'],
            registry=reg
        )
        self.reports_dropped = Counter(
            'execution_reports_dropped_total',
            'Execution reports dropped',
            labelnames=['pair', 'reason'],
            registry=reg
        )

        # === Deal Metrics ===
        self.deals_opened = Counter(
            'deals_opened_total',
            'Deals created and activated',
            labelnames=['pair'],
            registry=reg
        )
        self.deals_closed = Counter(
            'deals_closed_total',
            'Deals closed',
            labelnames=['pair'],
            registry=reg
        )
        self.last_deal_profit = Gauge(
            'last_deal_profit',
            'Realized profit of the most recently closed deal (quote asset)',
            labelnames=['pair'],
            registry=reg
        )
        self.realized_profit = Gauge(
            'realized_profit_total',
            'Realized profit summed over deals closed by this process (quote asset)',
            labelnames=['pair'],
            registry=reg
        )
