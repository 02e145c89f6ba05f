"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from src.config.pair_config import load_pair_overrides
from src.core.json_utils import dumps
from src.state.models import StrategyConfig

load_dotenv()


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _decimal_env(key: str, default: str) -> Decimal:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return Decimal(default)
    return Decimal(raw.strip())


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    pair: str
    strategy_name: str
    base_order_size: Decimal
    safety_order_size: Decimal
    start_order_type: str
    deal_start_condition: str
    target_profit_pct: Decimal
    max_safety_trades: int
    max_active_safety_trades: int
    price_deviation_pct: Decimal
    safety_volume_scale: Decimal
    safety_step_scale: Decimal
    api_key: Optional[str]
    api_secret: Optional[str]
    paper_trading: bool
    schedule_interval_sec: float
    close_poll_interval_sec: float
    close_max_wait_sec: float
    poll_open_orders: bool
    http_timeout: float
    state_dir: str
    metrics_port: int
    log_file: Optional[str]
    log_level: str
    strategy_file: str

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging (secrets masked)."""
        data = self.__dict__.copy()
        for key in ("api_key", "api_secret"):
            if data.get(key):
                data[key] = "***"
        return data

    @classmethod
    def load(cls) -> "Settings":
        cfg = cls(
            pair=os.getenv("DCA_PAIR", "BTCUSDT").strip().upper(),
            strategy_name=os.getenv("DCA_STRATEGY", "LONG").strip().upper(),
            base_order_size=_decimal_env("DCA_BASE_ORDER_SIZE", "10"),
            safety_order_size=_decimal_env("DCA_SAFETY_ORDER_SIZE", "20"),
            start_order_type=os.getenv("DCA_START_ORDER_TYPE", "LIMIT").strip().upper(),
            deal_start_condition=os.getenv("DCA_DEAL_START_CONDITION", "ASAP").strip().upper(),
            target_profit_pct=_decimal_env("DCA_TARGET_PROFIT_PCT", "1"),
            max_safety_trades=_int_env("DCA_MAX_SAFETY_TRADES", 5),
            max_active_safety_trades=_int_env("DCA_MAX_ACTIVE_SAFETY_TRADES", 0),
            price_deviation_pct=_decimal_env("DCA_PRICE_DEVIATION_PCT", "1"),
            safety_volume_scale=_decimal_env("DCA_SAFETY_VOLUME_SCALE", "1"),
            safety_step_scale=_decimal_env("DCA_SAFETY_STEP_SCALE", "1"),
            api_key=os.getenv("BINANCE_API_KEY"),
            api_secret=os.getenv("BINANCE_API_SECRET"),
            paper_trading=env_bool("DCA_PAPER_TRADING", True),
            schedule_interval_sec=_float_env("DCA_SCHEDULE_INTERVAL_SEC", 60.0),
            close_poll_interval_sec=_float_env("DCA_CLOSE_POLL_INTERVAL_SEC", 2.0),
            close_max_wait_sec=_float_env("DCA_CLOSE_MAX_WAIT_SEC", 60.0),
            poll_open_orders=env_bool("DCA_POLL_OPEN_ORDERS", True),
            http_timeout=_float_env("DCA_HTTP_TIMEOUT", 10.0),
            state_dir=os.getenv("DCA_STATE_DIR", "state"),
            metrics_port=_int_env("DCA_METRICS_PORT", 9095),
            log_file=os.getenv("DCA_LOG_FILE", "dcabot.log") or None,
            log_level=os.getenv("DCA_LOG_LEVEL", "INFO").strip().upper(),
            strategy_file=os.getenv("DCA_STRATEGY_FILE", "configs/strategy.yaml"),
        )
        _sanity_check(cfg)
        return cfg

    def strategy(self, overrides: Optional[Dict[str, Any]] = None) -> StrategyConfig:
        """
        Build the immutable StrategyConfig for new deals.

        Args:
            overrides: Field overrides for this pair; read from strategy_file when omitted
        """
        if overrides is None:
            overrides = load_pair_overrides(self.strategy_file).get(self.pair, {})
        data: Dict[str, Any] = {
            "pair": self.pair,
            "strategy": self.strategy_name,
            "base_order_size": self.base_order_size,
            "safety_order_size": self.safety_order_size,
            "start_order_type": self.start_order_type,
            "deal_start_condition": self.deal_start_condition,
            "target_profit_percentage": self.target_profit_pct,
            "max_safety_trades_count": self.max_safety_trades,
            "max_active_safety_trades_count": self.max_active_safety_trades,
            "price_deviation_percentage": self.price_deviation_pct,
            "safety_order_volume_scale": self.safety_volume_scale,
            "safety_order_step_scale": self.safety_step_scale,
        }
        data.update({k: v for k, v in overrides.items() if k in data and k != "pair"})
        return StrategyConfig.from_dict(data)


def _sanity_check(cfg: Settings) -> None:
    """
    Log critical settings once at startup so overrides are obvious.
    """
    logger = logging.getLogger("dcabot")
    payload = {
        "event": "config_loaded",
        "pair": cfg.pair,
        "paper_trading": cfg.paper_trading,
        "base_order_size": cfg.base_order_size,
        "safety_order_size": cfg.safety_order_size,
        "max_safety_trades": cfg.max_safety_trades,
        "schedule_interval_sec": cfg.schedule_interval_sec,
    }
    logger.info(dumps(payload))
