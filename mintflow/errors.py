"""
Errors - single structured error type for the purchase flow

Every failure surfaced by mintflow is a MintflowError carrying:
- code:    machine-readable ErrorCode
- message: human-readable description
- details: dict payload (instance id, offending address, nested cause, ...)

Callers branch on `error.code`, never on message text.
"""

from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    # Input / validation
    INVALID_INPUT = "INVALID_INPUT"
    UNSUPPORTED_TYPE = "UNSUPPORTED_TYPE"

    # Sale status
    NOT_STARTED = "NOT_STARTED"
    ENDED = "ENDED"
    SOLD_OUT = "SOLD_OUT"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"

    # Funds / transactions
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    GAS_ESTIMATION_FAILED = "GAS_ESTIMATION_FAILED"

    # Upstream
    API_ERROR = "API_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNSUPPORTED_NETWORK = "UNSUPPORTED_NETWORK"


class MintflowError(Exception):
    """Raised for every validation, upstream and execution failure."""

    def __init__(self, code: ErrorCode, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.details: dict[str, Any] = details or {}

    @property
    def cause(self) -> Optional[BaseException]:
        return self.details.get("cause")

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def __repr__(self) -> str:
        return f"MintflowError(code={self.code.value!r}, message={self.message!r})"


class CurrencyMismatchError(MintflowError):
    """Arithmetic or comparison attempted between two different currencies."""

    def __init__(self, operation: str, left: str, right: str):
        super().__init__(
            ErrorCode.INVALID_INPUT,
            f"Cannot {operation} different currencies: {left} and {right}",
            {"operation": operation, "left": left, "right": right},
        )
