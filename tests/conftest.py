"""
Pytest configuration and fixtures.
Adds the repo root to Python path so tests can import from src.
"""

import sys
from decimal import Decimal
from pathlib import Path

import pytest

# Add the repo root to sys.path
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from src.core.filters import ExchangeFilters  # noqa: E402
from src.execution.exchange import SymbolInfo  # noqa: E402
from src.state.models import StrategyConfig  # noqa: E402


@pytest.fixture
def filters():
    return ExchangeFilters.from_strings(
        min_price="0.01",
        max_price="100000",
        tick_size="0.01",
        min_qty="0.0001",
        max_qty="1000",
        step_size="0.0001",
    )


@pytest.fixture
def strategy():
    return StrategyConfig(
        pair="BTCUSDT",
        base_order_size=Decimal("100"),
        safety_order_size=Decimal("50"),
        target_profit_percentage=Decimal("1"),
        max_safety_trades_count=2,
        max_active_safety_trades_count=0,
        price_deviation_percentage=Decimal("2"),
        safety_order_volume_scale=Decimal("1.5"),
        safety_order_step_scale=Decimal("1.2"),
    )


@pytest.fixture
def symbol(filters):
    return SymbolInfo(pair="BTCUSDT", base_asset="BTC", quote_asset="USDT", filters=filters)
