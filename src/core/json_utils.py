"""
Fast JSON utilities for log payloads and the deal store.

Uses orjson (3-10x faster than stdlib json). Decimal values are not native to
orjson, so they are emitted as strings to keep full precision.

Usage:
    from src.core.json_utils import dumps, loads

    log.info(dumps({"event": "order_filled", "price": Decimal("100.5")}))
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Any

import orjson


def _default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


def dumps(obj: Any) -> str:
    """Encode to a compact JSON string."""
    return orjson.dumps(obj, default=_default).decode("utf-8")


def dumps_pretty(obj: Any) -> bytes:
    """Encode to indented JSON bytes (used for the on-disk deal store)."""
    return orjson.dumps(obj, default=_default, option=orjson.OPT_INDENT_2)


def loads(s: str | bytes) -> Any:
    return orjson.loads(s)
