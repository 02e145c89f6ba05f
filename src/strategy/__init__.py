"""
Strategy package - DCA ladder logic.

This package contains the ladder calculator that turns a strategy and the
current price into the base order plus safety orders of a deal.
"""

from src.strategy.ladder_calculator import (
    LadderCalculator,
    PlannedOrder,
    compute_ladder,
    cumulative_deviation,
)

__all__ = [
    "LadderCalculator",
    "PlannedOrder",
    "compute_ladder",
    "cumulative_deviation",
]
