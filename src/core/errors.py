"""
Error taxonomy for the DCA bot.

Creation-time errors (InvalidAmount, InsufficientFunds) propagate to the caller
of DealManager.start_or_continue_deal(). Exchange errors raised while placing or
cancelling orders are caught at the call site and logged so the next scheduled
pass can retry. Reference and protocol errors describe dropped reports.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional


class DcaBotError(Exception):
    """Base class for all bot errors."""


class InvalidAmount(DcaBotError):
    """A computed price or quantity falls outside an exchange filter's bounds."""

    def __init__(self, amount: Decimal, minimum: Decimal, maximum: Decimal) -> None:
        self.amount = amount
        self.minimum = minimum
        self.maximum = maximum
        super().__init__(f"Invalid amount {amount}: allowed range is [{minimum}, {maximum}]")


class InsufficientFunds(DcaBotError):
    """The ladder's committed volume exceeds the free quote balance."""

    def __init__(self, asset: str, required: Decimal, available: Decimal) -> None:
        self.asset = asset
        self.required = required
        self.available = available
        super().__init__(
            f"Not enough {asset} balance to support this deal. "
            f"{required} is needed, only {available} available in the wallet"
        )


class ExchangeTransportError(DcaBotError):
    """Network or API failure talking to the exchange."""

    def __init__(self, message: str, code: Optional[int] = None, status_code: Optional[int] = None) -> None:
        self.code = code
        self.status_code = status_code
        super().__init__(message)


class StaleOrMissingReference(DcaBotError):
    """A report references an unknown order/deal or a deal that is no longer ACTIVE."""


class ProtocolViolation(DcaBotError):
    """The exchange reported a status value the state machine does not know."""


class DealCloseTimeout(DcaBotError):
    """Buy cancellations were not confirmed within the close wait budget."""

    def __init__(self, deal_id: int, waited_sec: float) -> None:
        self.deal_id = deal_id
        self.waited_sec = waited_sec
        super().__init__(f"Deal {deal_id} still has open buy orders after {waited_sec:.1f}s")


class DealConflictError(DcaBotError):
    """Saving the deal would leave two ACTIVE deals for the same pair."""
