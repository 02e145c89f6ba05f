"""
Orchestrator package - Thin coordination layer.

This package contains the scheduler that drives periodic deal passes.
"""

from src.orchestrator.scheduler import DealScheduler, PassResult, SchedulerConfig

__all__ = [
    "DealScheduler",
    "PassResult",
    "SchedulerConfig",
]
