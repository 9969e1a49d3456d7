"""Fatal calculation errors and their resolution hints."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

__all__ = [
    "CalculationError",
    "ErrorCode",
    "RESOLUTION_HINTS",
    "resolution_hint",
]


class ErrorCode(str, Enum):
    CALC_INIT_FAILED = "CALC_INIT_FAILED"
    CALC_FX_LOCK_FAILED = "CALC_FX_LOCK_FAILED"
    CALC_RATE_NOT_FOUND = "CALC_RATE_NOT_FOUND"
    CALC_SEASON_NOT_FOUND = "CALC_SEASON_NOT_FOUND"
    CALC_CURRENCY_CONVERSION_FAILED = "CALC_CURRENCY_CONVERSION_FAILED"
    CALC_ARITHMETIC_ERROR = "CALC_ARITHMETIC_ERROR"
    CALC_NEGATIVE_FINAL_AMOUNT = "CALC_NEGATIVE_FINAL_AMOUNT"
    CALC_TAX_CONFIG_INVALID = "CALC_TAX_CONFIG_INVALID"
    CALC_MARKUP_INVALID = "CALC_MARKUP_INVALID"
    CALC_VERIFICATION_FAILED = "CALC_VERIFICATION_FAILED"


RESOLUTION_HINTS: Dict[ErrorCode, str] = {
    ErrorCode.CALC_INIT_FAILED: "Check that all referenced entities exist.",
    ErrorCode.CALC_FX_LOCK_FAILED: "Manually enter exchange rates.",
    ErrorCode.CALC_RATE_NOT_FOUND: "Admin must configure rates for this room/season/date.",
    ErrorCode.CALC_SEASON_NOT_FOUND: "Admin must configure seasons covering these dates.",
    ErrorCode.CALC_CURRENCY_CONVERSION_FAILED: "Add missing exchange rate.",
    ErrorCode.CALC_ARITHMETIC_ERROR: "Contact support.",
    ErrorCode.CALC_NEGATIVE_FINAL_AMOUNT: "Review discounts and configuration.",
    ErrorCode.CALC_TAX_CONFIG_INVALID: "Admin must fix tax configuration.",
    ErrorCode.CALC_MARKUP_INVALID: "Admin must configure markup.",
    ErrorCode.CALC_VERIFICATION_FAILED: "Contact support.",
}


def resolution_hint(code: ErrorCode) -> str:
    return RESOLUTION_HINTS[code]


class CalculationError(Exception):
    """Raised by any pipeline stage when the whole quote must be abandoned."""

    def __init__(self, code: ErrorCode, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})

    @property
    def resolution_hint(self) -> str:
        return RESOLUTION_HINTS[self.code]

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"
