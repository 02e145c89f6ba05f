"""
Configuration package.

This package contains configuration loading, validation, and per-pair overrides.
"""

from src.config.config import Settings
from src.config.config_validator import ConfigValidator, validate_and_log
from src.config.pair_config import load_pair_overrides

__all__ = [
    "Settings",
    "ConfigValidator",
    "validate_and_log",
    "load_pair_overrides",
]
