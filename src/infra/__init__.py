"""
Infrastructure package.

This package contains the Binance REST client, the user data stream and
logging configuration.
"""

from src.infra.binance_client import BinanceSpotClient
from src.infra.logging_cfg import build_logger
from src.infra.user_stream import UserDataStream, parse_execution_report

__all__ = [
    "BinanceSpotClient",
    "build_logger",
    "UserDataStream",
    "parse_execution_report",
]
