"""
Monitoring and observability package.

This package contains Prometheus metrics and console deal tables.
"""

from src.monitoring.deal_table import deal_table, ladder_table, print_deal, print_ladder
from src.monitoring.metrics_rich import DealMetrics

__all__ = [
    "deal_table",
    "ladder_table",
    "print_deal",
    "print_ladder",
    "DealMetrics",
]
