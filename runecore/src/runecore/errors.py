"""
Error taxonomy shared by every component.

Each error carries a stable ErrorKind so callers can branch on it
instead of parsing messages.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    INPUT_VALIDATION = "input_validation"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NO_AVAILABLE_COUNTER_ASSET = "no_available_counter_asset"
    RATE_LIMITED = "rate_limited"
    EXTERNAL_SERVICE = "external_service"
    BROADCAST_REJECTED = "broadcast_rejected"
    SETTLEMENT_TIMEOUT = "settlement_timeout"


class SwapError(Exception):
    """Base class for all swap errors."""

    kind: ErrorKind = ErrorKind.EXTERNAL_SERVICE
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, object] = {}

    def with_context(self, note: str, **details: object) -> SwapError:
        """Append note to the message and record details. Returns self for re-raising."""
        self.message = f"{self.message} ({note})"
        self.args = (self.message,)
        self.details.update(details)
        return self

    def to_dict(self) -> dict[str, object]:
        data: dict[str, object] = {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.details:
            data["details"] = self.details
        return data


class InputValidationError(SwapError):
    kind = ErrorKind.INPUT_VALIDATION


class InsufficientFunds(SwapError):
    """Raised when candidates are exhausted before a selection target is met."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, asset_class: str, message: str | None = None) -> None:
        super().__init__(message or f"Insufficient funds: not enough {asset_class}")
        self.asset_class = asset_class

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["asset_class"] = self.asset_class
        return data


class NoAvailableCounterAsset(SwapError):
    """Escrow currently holds nothing to give back. Retry after a short backoff."""

    kind = ErrorKind.NO_AVAILABLE_COUNTER_ASSET
    retryable = True


class RateLimited(SwapError):
    kind = ErrorKind.RATE_LIMITED
    retryable = True


class ExternalServiceError(SwapError):
    kind = ErrorKind.EXTERNAL_SERVICE


class BroadcastRejected(SwapError):
    kind = ErrorKind.BROADCAST_REJECTED

    def __init__(self, message: str, retryable: bool = False) -> None:
        super().__init__(message)
        self.retryable = retryable


class SettlementTimeout(SwapError):
    kind = ErrorKind.SETTLEMENT_TIMEOUT
