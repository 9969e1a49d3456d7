# src/resort_quote/rules/tax_engine.py
"""
Ordered tax computation.

Configurations run strictly by ascending ``calculation_order``. Each tax
records the explicit numeric base it was computed on. Percentage taxes pick
their base from ``applies_to``:

  SUBTOTAL_BEFORE_TAX   post-discount pre-tax subtotal
  CUMULATIVE            that subtotal plus every earlier tax flagged
                        ``is_cumulative_base``
  ACCOMMODATION_ONLY    post-discount room and extra-person cost
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Sequence, Tuple

from ..models import (
    TAX_TYPE_LINE_ITEM,
    LineItemType,
    TaxAppliesTo,
    TaxCalculationMethod,
    TaxConfiguration,
    TaxType,
)
from .audit import AuditBuilder, AuditStepType
from .context import CalculationContext, GuestCounts
from .currency import ZERO, money, percent_of
from .errors import CalculationError, ErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxResult:
    tax_config_id: str
    tax_type: LineItemType
    name: str
    cost_amount: Decimal
    base_amount: Decimal
    rate_value: Decimal
    calculation_method: TaxCalculationMethod
    calculation_order: int
    quantity_detail: Dict[str, Any] = field(default_factory=dict)

    def rounded(self) -> "TaxResult":
        return replace(self, cost_amount=money(self.cost_amount), base_amount=money(self.base_amount))


@dataclass(frozen=True)
class TaxBreakdown:
    green_tax: Decimal = ZERO
    service_charge: Decimal = ZERO
    gst: Decimal = ZERO
    vat: Decimal = ZERO

    @classmethod
    def from_results(cls, taxes: Iterable[TaxResult]) -> "TaxBreakdown":
        totals = {t: ZERO for t in LineItemType if t.is_tax}
        for tax in taxes:
            totals[tax.tax_type] += tax.cost_amount
        return cls(
            green_tax=totals[LineItemType.GREEN_TAX],
            service_charge=totals[LineItemType.SERVICE_CHARGE],
            gst=totals[LineItemType.GST],
            vat=totals[LineItemType.VAT],
        )

    def __add__(self, other: "TaxBreakdown") -> "TaxBreakdown":
        return TaxBreakdown(
            green_tax=self.green_tax + other.green_tax,
            service_charge=self.service_charge + other.service_charge,
            gst=self.gst + other.gst,
            vat=self.vat + other.vat,
        )

    @property
    def total(self) -> Decimal:
        return self.green_tax + self.service_charge + self.gst + self.vat

    def rounded(self) -> "TaxBreakdown":
        return TaxBreakdown(
            money(self.green_tax), money(self.service_charge), money(self.gst), money(self.vat)
        )


@dataclass(frozen=True)
class TaxOutcome:
    taxes: Tuple[TaxResult, ...]
    total: Decimal
    breakdown: TaxBreakdown


def _invalid(config: TaxConfiguration, message: str) -> CalculationError:
    return CalculationError(
        ErrorCode.CALC_TAX_CONFIG_INVALID,
        f"Tax configuration {config.id} ({config.name}): {message}",
        {"tax_config_id": config.id},
    )


def _line_item(config: TaxConfiguration) -> LineItemType:
    try:
        return TAX_TYPE_LINE_ITEM[TaxType(config.tax_type)]
    except ValueError:
        raise _invalid(config, f"unknown tax type {config.tax_type!r}") from None


def calculate_taxes(
    ctx: CalculationContext,
    configs: Sequence[TaxConfiguration],
    guests: GuestCounts,
    nights: int,
    post_discount_subtotal: Decimal,
    accommodation_base: Decimal,
    audit: AuditBuilder,
) -> TaxOutcome:
    results: List[TaxResult] = []
    cumulative_base = post_discount_subtotal

    for config in sorted(configs, key=lambda c: c.calculation_order):
        line_item = _line_item(config)
        method = config.calculation_method

        if method == TaxCalculationMethod.FIXED_PER_PERSON_PER_NIGHT:
            threshold = (
                config.child_age_threshold
                if config.child_age_threshold is not None
                else ctx.pass_through_child_age_threshold
            )
            eligible = guests.eligible_above(threshold, include_children=config.applies_to_children)
            rate = ctx.convert(config.rate_value, config.currency_code or ctx.quote_currency)
            amount = rate * eligible * nights
            base = amount
            detail: Dict[str, Any] = {
                "eligible_guests": eligible,
                "nights": nights,
                "rate_in_quote_currency": str(money(rate)),
                "child_age_threshold": threshold,
            }
        elif method == TaxCalculationMethod.PERCENTAGE:
            applies_to = config.applies_to
            if applies_to == TaxAppliesTo.SUBTOTAL_BEFORE_TAX:
                base = post_discount_subtotal
            elif applies_to == TaxAppliesTo.CUMULATIVE:
                base = cumulative_base
            elif applies_to == TaxAppliesTo.ACCOMMODATION_ONLY:
                base = accommodation_base
            else:
                raise _invalid(config, f"unknown applies_to {applies_to!r}")
            amount = percent_of(base, config.rate_value)
            detail = {"applies_to": TaxAppliesTo(applies_to).value, "percentage": str(config.rate_value)}
        else:
            raise _invalid(config, f"unknown calculation method {method!r}")

        if config.is_cumulative_base:
            cumulative_base += amount

        results.append(
            TaxResult(
                tax_config_id=config.id,
                tax_type=line_item,
                name=config.name,
                cost_amount=amount,
                base_amount=base,
                rate_value=config.rate_value,
                calculation_method=TaxCalculationMethod(method),
                calculation_order=config.calculation_order,
                quantity_detail=detail,
            )
        )
        audit.add_step(
            AuditStepType.TAX_CALCULATION,
            f"{config.name} (order {config.calculation_order})",
            inputs={
                "tax_config_id": config.id,
                "tax_type": line_item.value,
                "calculation_method": TaxCalculationMethod(method).value,
                "base_amount": str(money(base)),
                "rate_value": str(config.rate_value),
                **detail,
            },
            outputs={
                "tax_amount": str(money(amount)),
                "cumulative_base": str(money(cumulative_base)),
            },
            result_amount=amount,
        )

    total = sum((t.cost_amount for t in results), ZERO)
    logger.debug("taxes %s from %d configuration(s)", total, len(results))
    return TaxOutcome(tuple(results), total, TaxBreakdown.from_results(results))


def validate_tax_configurations(configs: Sequence[TaxConfiguration]) -> List[str]:
    """Configuration problems for one resort's taxes; empty when sound."""
    problems: List[str] = []
    seen: Dict[int, str] = {}
    for config in configs:
        if config.calculation_order in seen:
            problems.append(
                f"tax {config.id} shares calculation_order {config.calculation_order} "
                f"with {seen[config.calculation_order]}"
            )
        else:
            seen[config.calculation_order] = config.id

        if config.calculation_method == TaxCalculationMethod.PERCENTAGE and not (
            ZERO <= config.rate_value <= Decimal("100")
        ):
            problems.append(f"tax {config.id} percentage {config.rate_value} outside 0..100")
        if config.tax_type == TaxType.GREEN_TAX and (
            config.calculation_method != TaxCalculationMethod.FIXED_PER_PERSON_PER_NIGHT
        ):
            problems.append(f"tax {config.id} is a pass-through tax but not priced per person per night")

    service_orders = [c.calculation_order for c in configs if c.tax_type == TaxType.SERVICE_CHARGE]
    if service_orders:
        first_service = min(service_orders)
        for config in configs:
            if config.tax_type in (TaxType.GST, TaxType.VAT) and config.calculation_order < first_service:
                problems.append(
                    f"tax {config.id} ({config.tax_type.value}) is ordered before the service charge"
                )
    return problems
