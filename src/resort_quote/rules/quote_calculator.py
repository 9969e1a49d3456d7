# src/resort_quote/rules/quote_calculator.py
from __future__ import annotations

import logging
from dataclasses import dataclass, fields, is_dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..models import ExchangeRateSource, MarkupType, ValidationSeverity
from ..schemas import QuoteRequest
from ..settings import settings
from .audit import AuditBuilder, AuditStep, AuditStepType, ValidationItem
from .context import CalculationContext, ReferenceData
from .currency import ZERO, PricingBreakdown, lock_exchange_rates, money
from .errors import CalculationError, ErrorCode
from .leg_calculator import LegCalculationResult, calculate_leg
from .markup_engine import margin_percentage, markup_percentage, transfer_markup
from .result import Err, Ok, Result
from .tax_engine import TaxBreakdown

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InterResortTransferResult:
    from_leg_index: int
    to_leg_index: int
    transfer_description: str
    source_cost: Decimal
    source_currency: str
    cost_amount: Decimal
    markup_amount: Decimal
    sell_amount: Decimal
    markup_source: str = "DESTINATION_RESORT"
    markup_config_id: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class QuoteLevelMarkupRecord:
    markup_type: MarkupType
    markup_value: Decimal
    override_reason: Optional[str]


@dataclass(frozen=True)
class QuoteTotals:
    legs_cost: Decimal = ZERO
    legs_markup: Decimal = ZERO
    legs_sell: Decimal = ZERO
    irt_cost: Decimal = ZERO
    irt_markup: Decimal = ZERO
    irt_sell: Decimal = ZERO
    quote_level_markup: Decimal = ZERO
    total_cost: Decimal = ZERO
    total_markup: Decimal = ZERO
    total_sell: Decimal = ZERO
    margin_percentage: Decimal = ZERO
    markup_percentage: Decimal = ZERO
    total_taxes: Decimal = ZERO

    @classmethod
    def zero(cls) -> "QuoteTotals":
        z = money(0)
        return cls(*(z for _ in fields(cls)))


@dataclass(frozen=True)
class QuoteCalculationResult:
    success: bool
    calculated_at: datetime
    currency_code: str
    exchange_rates: Dict[str, Decimal]
    exchange_rate_timestamp: datetime
    exchange_rate_source: ExchangeRateSource
    legs: Tuple[LegCalculationResult, ...]
    inter_resort_transfers: Tuple[InterResortTransferResult, ...]
    quote_level_markup: Optional[QuoteLevelMarkupRecord]
    totals: QuoteTotals
    taxes_breakdown: TaxBreakdown
    warnings: Tuple[ValidationItem, ...]
    audit_steps: Tuple[AuditStep, ...]

    def to_dict(self) -> Dict[str, Any]:
        return _jsonable(self)


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _jsonable(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {_jsonable(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class QuoteCalculator:
    """
    Prices a whole quote: every leg, the transfers between them, optional
    quote-level markup, aggregation and the final verification checks.

    ``calculate`` never raises; any failure comes back as a result carrying
    one blocking warning.
    """

    def __init__(
        self,
        data: ReferenceData,
        *,
        pass_through_child_age_threshold: Optional[int] = None,
        verification_tolerance: Optional[Decimal] = None,
    ):
        self.data = data
        self.pass_through_child_age_threshold = (
            pass_through_child_age_threshold
            if pass_through_child_age_threshold is not None
            else settings.pass_through_child_age_threshold
        )
        self.verification_tolerance = (
            verification_tolerance
            if verification_tolerance is not None
            else settings.verification_tolerance
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def calculate(self, request: QuoteRequest) -> QuoteCalculationResult:
        audit = AuditBuilder()
        outcome = self.try_calculate(request, audit)
        if isinstance(outcome, Ok):
            return outcome.value
        return self._failure(request, outcome.error, audit)

    def try_calculate(
        self, request: QuoteRequest, audit: Optional[AuditBuilder] = None
    ) -> Result[QuoteCalculationResult, CalculationError]:
        audit = audit if audit is not None else AuditBuilder()
        try:
            return Ok(self._calculate(request, audit))
        except CalculationError as exc:
            logger.warning("quote calculation failed: %s", exc)
            return Err(exc)
        except (InvalidOperation, ZeroDivisionError) as exc:
            logger.warning("quote calculation hit an arithmetic error: %s", exc)
            return Err(CalculationError(ErrorCode.CALC_ARITHMETIC_ERROR, f"Arithmetic error: {exc!r}"))
        except Exception as exc:
            logger.exception("quote calculation raised unexpectedly")
            return Err(CalculationError(ErrorCode.CALC_INIT_FAILED, f"Unexpected error: {exc!r}"))

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _calculate(self, request: QuoteRequest, audit: AuditBuilder) -> QuoteCalculationResult:
        locked = lock_exchange_rates(request.currency_code, request.manual_exchange_rates)
        ctx = CalculationContext(
            quote_currency=locked.quote_currency,
            locked_rates=locked,
            booking_date=request.booking_date or date.today(),
            data=self.data,
            pass_through_child_age_threshold=self.pass_through_child_age_threshold,
        )
        audit.add_step(
            AuditStepType.QUOTE_AGGREGATION,
            "Quote calculation initialized",
            inputs={
                "currency_code": ctx.quote_currency,
                "legs": len(request.legs),
                "inter_resort_transfers": len(request.inter_resort_transfers),
                "booking_date": ctx.booking_date.isoformat(),
            },
            outputs={
                "exchange_rates": {k: str(v) for k, v in locked.rates.items()},
                "exchange_rate_source": locked.source.value,
            },
        )

        quote_markup = request.quote_level_markup
        quote_level = quote_markup is not None
        quote_level_record: Optional[QuoteLevelMarkupRecord] = None
        quote_level_amount = ZERO
        if quote_markup is not None:
            if quote_markup.markup_value < ZERO:
                raise CalculationError(
                    ErrorCode.CALC_MARKUP_INVALID,
                    f"Quote-level markup cannot be negative: {quote_markup.markup_value}",
                )
            quote_level_amount = money(quote_markup.markup_value)
            quote_level_record = QuoteLevelMarkupRecord(
                MarkupType.FIXED, quote_level_amount, quote_markup.override_reason
            )
            audit.add_step(
                AuditStepType.QUOTE_LEVEL_MARKUP,
                "Quote-level fixed markup override requested",
                inputs={"override_reason": quote_markup.override_reason},
                outputs={"markup_amount": str(quote_level_amount)},
                result_amount=quote_level_amount,
            )

        legs: List[LegCalculationResult] = []
        for index, leg in enumerate(request.legs):
            leg_audit = AuditBuilder(leg_index=index)
            try:
                legs.append(calculate_leg(ctx, leg, index, leg_audit, quote_level_markup=quote_level))
            except CalculationError as exc:
                exc.context.setdefault("leg_index", index)
                raise
            finally:
                audit.merge(leg_audit)

        transfers = self._inter_resort_transfers(ctx, request, legs, audit, quote_level)
        taxes = TaxBreakdown()
        for leg_result in legs:
            taxes = taxes + leg_result.tax_breakdown
        taxes = taxes.rounded()
        totals = self._aggregate(legs, transfers, quote_level_amount, quote_level, taxes)

        audit.add_step(
            AuditStepType.QUOTE_AGGREGATION,
            "Quote totals",
            inputs={
                "legs_sell": str(totals.legs_sell),
                "irt_sell": str(totals.irt_sell),
                "quote_level_markup": str(totals.quote_level_markup),
            },
            outputs={
                "total_cost": str(totals.total_cost),
                "total_markup": str(totals.total_markup),
                "total_sell": str(totals.total_sell),
                "margin_percentage": str(totals.margin_percentage),
            },
            result_amount=totals.total_sell,
        )
        self._verify(legs, totals)

        return QuoteCalculationResult(
            success=True,
            calculated_at=datetime.now(timezone.utc),
            currency_code=ctx.quote_currency,
            exchange_rates=ctx.exchange_rates,
            exchange_rate_timestamp=ctx.exchange_rate_timestamp,
            exchange_rate_source=ctx.exchange_rate_source,
            legs=tuple(legs),
            inter_resort_transfers=tuple(transfers),
            quote_level_markup=quote_level_record,
            totals=totals,
            taxes_breakdown=taxes,
            warnings=audit.warnings,
            audit_steps=audit.steps,
        )

    def _inter_resort_transfers(
        self,
        ctx: CalculationContext,
        request: QuoteRequest,
        legs: List[LegCalculationResult],
        audit: AuditBuilder,
        quote_level: bool,
    ) -> List[InterResortTransferResult]:
        results: List[InterResortTransferResult] = []
        for index, transfer in enumerate(request.inter_resort_transfers):
            if index >= len(legs) - 1:
                logger.info("ignoring inter-resort transfer %d: no leg %d to connect to", index, index + 1)
                continue
            destination = legs[index + 1]
            cost = ctx.convert(transfer.cost_amount, transfer.currency_code)

            config_id: Optional[str] = None
            if quote_level:
                markup = ZERO
            else:
                config = self.data.get_markup_configuration(destination.resort_id)
                markup = transfer_markup(config, destination.resort_id, cost)
                config_id = config.id if config else None

            pricing = PricingBreakdown.of(cost, markup)
            audit.add_step(
                AuditStepType.INTER_RESORT_TRANSFER,
                f"{transfer.transfer_description}: leg {index + 1} to leg {index + 2}",
                inputs={
                    "source_cost": str(transfer.cost_amount),
                    "source_currency": transfer.currency_code,
                    "destination_resort_id": destination.resort_id,
                    "markup_config_id": config_id,
                },
                outputs={
                    "cost_amount": str(pricing.cost_amount),
                    "markup_amount": str(pricing.markup_amount),
                    "sell_amount": str(pricing.sell_amount),
                },
                result_amount=pricing.sell_amount,
            )
            results.append(
                InterResortTransferResult(
                    from_leg_index=index,
                    to_leg_index=index + 1,
                    transfer_description=transfer.transfer_description,
                    source_cost=money(transfer.cost_amount),
                    source_currency=transfer.currency_code,
                    cost_amount=pricing.cost_amount,
                    markup_amount=pricing.markup_amount,
                    sell_amount=pricing.sell_amount,
                    markup_config_id=config_id,
                    notes=transfer.notes,
                )
            )
        return results

    @staticmethod
    def _aggregate(
        legs: List[LegCalculationResult],
        transfers: List[InterResortTransferResult],
        quote_level_amount: Decimal,
        quote_level: bool,
        taxes: TaxBreakdown,
    ) -> QuoteTotals:
        legs_cost = sum((leg.totals.cost_amount for leg in legs), ZERO)
        legs_markup = sum((leg.totals.markup_amount for leg in legs), ZERO)
        legs_sell = sum((leg.totals.sell_amount for leg in legs), ZERO)
        irt_cost = sum((t.cost_amount for t in transfers), ZERO)
        irt_markup = sum((t.markup_amount for t in transfers), ZERO)
        irt_sell = sum((t.sell_amount for t in transfers), ZERO)

        total_cost = legs_cost + irt_cost
        total_markup = quote_level_amount if quote_level else legs_markup + irt_markup
        total_sell = legs_sell + irt_sell + quote_level_amount

        return QuoteTotals(
            legs_cost=money(legs_cost),
            legs_markup=money(legs_markup),
            legs_sell=money(legs_sell),
            irt_cost=money(irt_cost),
            irt_markup=money(irt_markup),
            irt_sell=money(irt_sell),
            quote_level_markup=money(quote_level_amount),
            total_cost=money(total_cost),
            total_markup=money(total_markup),
            total_sell=money(total_sell),
            margin_percentage=money(margin_percentage(total_markup, total_sell)),
            markup_percentage=money(markup_percentage(total_cost, total_sell)),
            total_taxes=taxes.total,
        )

    def _verify(self, legs: List[LegCalculationResult], totals: QuoteTotals) -> None:
        tolerance = self.verification_tolerance
        for leg in legs:
            drift = abs(leg.totals.cost_amount + leg.totals.markup_amount - leg.totals.sell_amount)
            if drift > tolerance:
                raise CalculationError(
                    ErrorCode.CALC_VERIFICATION_FAILED,
                    f"Leg {leg.leg_index + 1} cost + markup differs from sell by {drift}",
                    {"leg_index": leg.leg_index},
                )

        drift = abs(totals.total_cost + totals.total_markup - totals.total_sell)
        if drift > tolerance:
            raise CalculationError(
                ErrorCode.CALC_VERIFICATION_FAILED,
                f"Quote cost + markup differs from sell by {drift}",
                {
                    "total_cost": str(totals.total_cost),
                    "total_markup": str(totals.total_markup),
                    "total_sell": str(totals.total_sell),
                },
            )
        if totals.total_sell < ZERO:
            raise CalculationError(
                ErrorCode.CALC_NEGATIVE_FINAL_AMOUNT,
                f"Final sell amount is negative: {totals.total_sell}",
                {"total_sell": str(totals.total_sell)},
            )

    def _failure(
        self, request: QuoteRequest, error: CalculationError, audit: AuditBuilder
    ) -> QuoteCalculationResult:
        audit.add_step(
            AuditStepType.CALCULATION_FAILED,
            error.message,
            inputs={k: _jsonable(v) for k, v in error.context.items()},
            outputs={"error_code": error.code.value},
        )
        now = datetime.now(timezone.utc)
        currency = request.currency_code.upper()
        blocking = ValidationItem(
            code=error.code.value,
            message=error.message,
            severity=ValidationSeverity.BLOCKING,
            leg_index=error.context.get("leg_index"),
            resolution_hint=error.resolution_hint,
        )
        return QuoteCalculationResult(
            success=False,
            calculated_at=now,
            currency_code=currency,
            exchange_rates={currency: Decimal("1")},
            exchange_rate_timestamp=now,
            exchange_rate_source=ExchangeRateSource.SYSTEM_DEFAULT,
            legs=(),
            inter_resort_transfers=(),
            quote_level_markup=None,
            totals=QuoteTotals.zero(),
            taxes_breakdown=TaxBreakdown().rounded(),
            warnings=(blocking,),
            audit_steps=audit.steps,
        )


def calculate_quote(request: QuoteRequest, data: ReferenceData, **options: Any) -> QuoteCalculationResult:
    return QuoteCalculator(data, **options).calculate(request)


def try_calculate_quote(
    request: QuoteRequest, data: ReferenceData, **options: Any
) -> Result[QuoteCalculationResult, CalculationError]:
    return QuoteCalculator(data, **options).try_calculate(request)
