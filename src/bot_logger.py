"""
DealLogger: Centralized event logging for the DCA bot with level management.

Components log through a `log_event(event, **data)` callback. DealLogger
supplies that callback and picks the level from the event name:
- CRITICAL: state that can no longer be trusted (store write failures)
- ERROR: failures requiring attention (submit/cancel errors, close timeouts)
- WARNING: dropped or ignored input (stale reports, protocol violations)
- INFO: lifecycle events (deal created/closed, fills, take-profit placed)
- DEBUG: high-frequency events (queue items, polls)

Usage:
    logger = DealLogger(pair="BTCUSDT")
    logger.log("deal_created", deal_id=1, orders=5)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Set

from src.core.json_utils import dumps

log = logging.getLogger("dcabot")


@dataclass
class DealLoggerConfig:
    # Throttle window for repetitive warnings
    throttle_window_sec: float = 60.0
    debug_enabled: bool = False


class DealLogger:
    CRITICAL_EVENTS: Set[str] = {
        "deal_store_write_error", "deal_conflict",
    }

    ERROR_EVENTS: Set[str] = {
        "order_submit_error", "cancel_error", "order_query_error",
        "deal_close_timeout", "scheduled_pass_error", "queue_item_error",
        "deal_create_error", "user_stream_error",
    }

    WARNING_EVENTS: Set[str] = {
        "report_dropped_missing_order", "report_dropped_missing_deal",
        "report_dropped_stale_deal", "report_protocol_violation",
        "transition_ignored", "insufficient_funds", "user_stream_reconnect",
    }

    DEBUG_EVENTS: Set[str] = {
        "queue_item_start", "order_poll", "order_transition", "report_duplicate",
    }

    # Events to throttle (only log once per window)
    THROTTLE_EVENTS: Set[str] = {
        "insufficient_funds", "transition_ignored",
    }

    def __init__(self, pair: str, config: Optional[DealLoggerConfig] = None) -> None:
        self.pair = pair
        self.config = config or DealLoggerConfig()
        self._throttle_times: Dict[str, float] = {}

    def level_for(self, event: str) -> int:
        if event in self.CRITICAL_EVENTS:
            return logging.CRITICAL
        if event in self.ERROR_EVENTS:
            return logging.ERROR
        if event in self.WARNING_EVENTS:
            return logging.WARNING
        if event in self.DEBUG_EVENTS:
            return logging.DEBUG
        return logging.INFO

    def log(self, event: str, **data: Any) -> None:
        level = self.level_for(event)

        if event in self.THROTTLE_EVENTS:
            now = time.time()
            last_time = self._throttle_times.get(event, 0.0)
            if now - last_time < self.config.throttle_window_sec:
                return
            self._throttle_times[event] = now

        if level == logging.DEBUG and not self.config.debug_enabled:
            return

        payload = {"event": event, "pair": self.pair, **data}
        log.log(level, dumps(payload))

    def get_callback(self) -> Callable[..., None]:
        return self.log
