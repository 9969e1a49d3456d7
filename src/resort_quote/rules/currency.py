"""Money rounding, exchange-rate locking and conversion."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Mapping, Optional

from ..models import ExchangeRateSource
from .errors import CalculationError, ErrorCode

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
_CENT = Decimal("0.01")


def money(x: Decimal | int | float | str) -> Decimal:
    """Round to cents, half-up. The only rounding rule used for returned values."""
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(_CENT, rounding=ROUND_HALF_UP)


def percent_of(base: Decimal, pct: Decimal) -> Decimal:
    return base * pct / HUNDRED


@dataclass(frozen=True)
class PricingBreakdown:
    cost_amount: Decimal
    markup_amount: Decimal
    sell_amount: Decimal

    @classmethod
    def of(cls, cost: Decimal, markup: Decimal) -> "PricingBreakdown":
        """Round cost and markup once each; sell is their exact sum."""
        cost_r, markup_r = money(cost), money(markup)
        return cls(cost_r, markup_r, cost_r + markup_r)


@dataclass(frozen=True)
class LockedRates:
    quote_currency: str
    rates: Mapping[str, Decimal]
    locked_at: datetime
    source: ExchangeRateSource

    def as_dict(self) -> Dict[str, Decimal]:
        return dict(self.rates)


def lock_exchange_rates(
    quote_currency: str,
    manual_rates: Optional[Mapping[str, Decimal]] = None,
    *,
    now: Optional[datetime] = None,
) -> LockedRates:
    """
    Snapshot the rates used for one calculation call.

    ``manual_rates`` maps a currency code to units of quote currency per one
    unit of that currency. The quote currency itself is always pinned at 1.
    """
    quote = quote_currency.upper()
    rates: Dict[str, Decimal] = {}
    source = ExchangeRateSource.SYSTEM_DEFAULT

    if manual_rates:
        source = ExchangeRateSource.MANUAL_ENTRY
        for code, value in manual_rates.items():
            rate = value if isinstance(value, Decimal) else Decimal(str(value))
            if not rate.is_finite() or rate <= ZERO:
                raise CalculationError(
                    ErrorCode.CALC_FX_LOCK_FAILED,
                    f"Exchange rate for {code} must be positive, got {value}",
                    {"currency": code, "rate": str(value)},
                )
            rates[code.upper()] = rate

    rates[quote] = Decimal("1")
    locked_at = now or datetime.now(timezone.utc)
    logger.debug("locked %d exchange rate(s) for %s (%s)", len(rates), quote, source.value)
    return LockedRates(quote_currency=quote, rates=rates, locked_at=locked_at, source=source)


def to_quote_currency(amount: Decimal, currency_code: str, locked: LockedRates) -> Decimal:
    code = (currency_code or "").upper()
    if code == locked.quote_currency:
        return amount
    rate = locked.rates.get(code)
    if rate is None:
        raise CalculationError(
            ErrorCode.CALC_CURRENCY_CONVERSION_FAILED,
            f"No locked exchange rate for {code or '<blank>'} -> {locked.quote_currency}",
            {"from_currency": code, "to_currency": locked.quote_currency},
        )
    return amount * rate
