"""
Execution layer components for DCA deals.

- DealManager: deal lifecycle and order reconciliation
- OrderStateMachine: guarded order status transitions
- DealWorkQueue: single-concurrency ordered work queue
- DealLocks: per-pair locks around deal mutations
- ExchangeClient: the exchange contract the engine depends on
"""

from src.execution.deal_locks import DealLocks
from src.execution.deal_manager import DealManager, DealManagerConfig
from src.execution.exchange import ExchangeClient, ExecutionReport, OrderSnapshot, PlacedOrder, SymbolInfo
from src.execution.order_state_machine import OrderStateMachine, TransitionResult, parse_reported_status
from src.execution.work_queue import DealWorkQueue

__all__ = [
    "DealLocks",
    "DealManager",
    "DealManagerConfig",
    "ExchangeClient",
    "ExecutionReport",
    "OrderSnapshot",
    "PlacedOrder",
    "SymbolInfo",
    "OrderStateMachine",
    "TransitionResult",
    "parse_reported_status",
    "DealWorkQueue",
]
