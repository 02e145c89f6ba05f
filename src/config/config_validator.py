"""
Configuration validation.

- Range checks for the strategy and runtime parameters
- Credentials required before the bot can trade
- Only the LONG / LIMIT / ASAP strategy variant is supported
- Warnings for live trading and for ladders that reach 100% deviation
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum, auto
from typing import Any, Dict, List, Optional, Tuple

from src.strategy.ladder_calculator import cumulative_deviation

logger = logging.getLogger("dcabot")


class ValidationSeverity(Enum):
    """Severity levels for validation issues."""
    ERROR = auto()    # Blocks startup
    WARNING = auto()  # Logs warning but allows startup
    INFO = auto()     # Informational only


@dataclass
class ValidationIssue:
    """A single validation issue."""
    field: str
    message: str
    severity: ValidationSeverity
    value: Any = None
    suggestion: Optional[str] = None


@dataclass
class ValidationResult:
    """Result of config validation."""
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)

    def has_errors(self) -> bool:
        return any(i.severity == ValidationSeverity.ERROR for i in self.issues)

    def get_errors(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.ERROR]

    def get_warnings(self) -> List[ValidationIssue]:
        return [i for i in self.issues if i.severity == ValidationSeverity.WARNING]


class ConfigValidator:
    """
    Validates Settings before the bot starts.

    Checks:
    - Required fields are present
    - Numeric values are within range (bounds exclusive where noted)
    - Supported strategy variant
    - Risky configurations
    """

    # (min, max, min_exclusive, max_exclusive)
    NUMERIC_RANGES: Dict[str, Tuple[float, float, bool, bool]] = {
        "base_order_size": (0.0, 1e12, True, False),
        "safety_order_size": (0.0, 1e12, True, False),
        "target_profit_pct": (0.0, 100.0, True, True),
        "price_deviation_pct": (0.0, 100.0, True, True),
        "safety_volume_scale": (0.0, 1e6, True, False),
        "safety_step_scale": (0.0, 1e6, True, False),
        "max_safety_trades": (0, 1000, False, False),
        "max_active_safety_trades": (0, 1000, False, False),
        "schedule_interval_sec": (1.0, 86400.0, False, False),
        "close_poll_interval_sec": (0.0, 600.0, True, False),
        "close_max_wait_sec": (0.0, 3600.0, True, False),
        "http_timeout": (0.5, 120.0, False, False),
        "metrics_port": (0, 65535, False, False),
    }

    REQUIRED_STRINGS: List[str] = [
        "pair",
        "api_key",
        "api_secret",
    ]

    SUPPORTED_VALUES: Dict[str, Tuple[str, ...]] = {
        "strategy_name": ("LONG",),
        "start_order_type": ("LIMIT",),
        "deal_start_condition": ("ASAP",),
    }

    def validate(self, cfg) -> ValidationResult:
        """
        Validate a Settings object.

        Args:
            cfg: Settings instance to validate

        Returns:
            ValidationResult with all issues found
        """
        issues: List[ValidationIssue] = []
        issues.extend(self._validate_required_strings(cfg))
        issues.extend(self._validate_numeric_ranges(cfg))
        issues.extend(self._validate_supported_values(cfg))
        issues.extend(self._check_risky_configs(cfg))

        has_errors = any(i.severity == ValidationSeverity.ERROR for i in issues)
        return ValidationResult(valid=not has_errors, issues=issues)

    def _validate_required_strings(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name in self.REQUIRED_STRINGS:
            value = getattr(cfg, field_name, None)
            if not value or (isinstance(value, str) and not value.strip()):
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"Required field '{field_name}' is missing or empty",
                    severity=ValidationSeverity.ERROR,
                ))
        return issues

    def _validate_numeric_ranges(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, (min_val, max_val, min_excl, max_excl) in self.NUMERIC_RANGES.items():
            value = getattr(cfg, field_name, None)
            if value is None:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"Required numeric field '{field_name}' is missing",
                    severity=ValidationSeverity.ERROR,
                ))
                continue
            try:
                num_value = float(value)
            except (TypeError, ValueError):
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' has invalid numeric value: {value}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                ))
                continue

            too_low = num_value <= min_val if min_excl else num_value < min_val
            too_high = num_value >= max_val if max_excl else num_value > max_val
            if too_low:
                bound = "above" if min_excl else "at least"
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {value} must be {bound} {min_val}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                ))
            elif too_high:
                bound = "below" if max_excl else "at most"
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"'{field_name}' value {value} must be {bound} {max_val}",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                ))
        return issues

    def _validate_supported_values(self, cfg) -> List[ValidationIssue]:
        issues = []
        for field_name, allowed in self.SUPPORTED_VALUES.items():
            value = getattr(cfg, field_name, None)
            if value not in allowed:
                issues.append(ValidationIssue(
                    field=field_name,
                    message=f"Unsupported {field_name} '{value}'",
                    severity=ValidationSeverity.ERROR,
                    value=value,
                    suggestion=f"Use one of {', '.join(allowed)}",
                ))
        return issues

    def _check_risky_configs(self, cfg) -> List[ValidationIssue]:
        issues = []

        if not getattr(cfg, "paper_trading", True):
            issues.append(ValidationIssue(
                field="paper_trading",
                message="Live trading enabled: orders go to the production exchange",
                severity=ValidationSeverity.WARNING,
                suggestion="Set DCA_PAPER_TRADING=true to use the testnet",
            ))

        try:
            deviation = Decimal(str(cfg.price_deviation_pct)) / 100
            step_scale = Decimal(str(cfg.safety_step_scale))
            trades = int(cfg.max_safety_trades)
        except (AttributeError, TypeError, ValueError, ArithmeticError):
            return issues
        if trades > 0 and step_scale > 0:
            final = cumulative_deviation(deviation, step_scale, trades)
            if final >= 1:
                issues.append(ValidationIssue(
                    field="max_safety_trades",
                    message=f"Last safety order deviates {final * 100:.2f}% from the entry price",
                    severity=ValidationSeverity.WARNING,
                    value=trades,
                    suggestion="Lower the step scale, deviation or safety trade count",
                ))
        return issues


def validate_config(cfg) -> ValidationResult:
    validator = ConfigValidator()
    return validator.validate(cfg)


def validate_and_log(cfg, logger_instance=None) -> bool:
    """
    Validate config and log all issues.

    Returns:
        True if config is valid (no errors), False otherwise
    """
    log = logger_instance or logger
    result = validate_config(cfg)

    for issue in result.get_errors():
        msg = f"CONFIG ERROR: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.error(msg)

    for issue in result.get_warnings():
        msg = f"CONFIG WARNING: {issue.message}"
        if issue.suggestion:
            msg += f" (suggestion: {issue.suggestion})"
        log.warning(msg)

    if result.valid:
        log.info("Configuration validation passed")
    else:
        log.error(f"Configuration validation failed with {len(result.get_errors())} error(s)")

    return result.valid
