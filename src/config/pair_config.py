"""Load per-pair strategy overrides from YAML.

Optional file path via env `DCA_STRATEGY_FILE`, default `configs/strategy.yaml`.
Returns a dict mapping pair -> dict of StrategyConfig field overrides.

Example:
    BTCUSDT:
      target_profit_percentage: 1.5
      max_safety_trades_count: 8
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict

import yaml

from src.core.json_utils import dumps

log = logging.getLogger("dcabot")


def load_pair_overrides(path: str | None = None) -> Dict[str, Dict[str, Any]]:
    if path is None:
        path = os.getenv("DCA_STRATEGY_FILE", "configs/strategy.yaml")
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with p.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        log.warning(dumps({"event": "strategy_file_error", "path": str(p), "error": str(exc)}))
        return {}
    if isinstance(data, dict):
        return {str(k).upper(): v for k, v in data.items() if isinstance(v, dict)}
    return {}
