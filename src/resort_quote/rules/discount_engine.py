# src/resort_quote/rules/discount_engine.py
"""
Discount eligibility, stacking and application.

Bases are always taken from the leg's original, un-discounted costs, so
stacked discounts never compound: two 10% discounts on a 1000 base are
100 + 100. Taxes are never part of a discount base. Nothing in here is
fatal; every rejected or trimmed discount becomes a warning.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from functools import reduce
from typing import Collection, Dict, List, Optional, Sequence, Tuple

from ..models import (
    PRE_TAX_LINE_ITEMS,
    TAX_LINE_ITEMS,
    Discount,
    DiscountBaseType,
    DiscountType,
    LineItemType,
)
from .audit import AuditBuilder, AuditStepType
from .context import CalculationContext, PreTaxCosts
from .currency import ZERO, money, percent_of

logger = logging.getLogger(__name__)

EXCEEDS_BASE_HINT = "Review discount configuration or stay parameters."

_TAX_ORDER = tuple(t for t in LineItemType if t in TAX_LINE_ITEMS)


@dataclass(frozen=True)
class DiscountResult:
    discount_id: str
    discount_name: str
    discount_code: str
    discount_type: DiscountType
    discount_value: Decimal
    base_type: DiscountBaseType
    base_amount: Decimal
    discount_amount: Decimal
    base_composition: Tuple[LineItemType, ...]
    excluded_from_base: Tuple[LineItemType, ...]

    def rounded(self) -> "DiscountResult":
        return replace(
            self, base_amount=money(self.base_amount), discount_amount=money(self.discount_amount)
        )


@dataclass(frozen=True)
class DiscountOutcome:
    discounts: Tuple[DiscountResult, ...]
    total: Decimal
    allocation: Dict[LineItemType, Decimal]


@dataclass(frozen=True)
class StayFacts:
    check_in: date
    check_out: date
    nights: int
    booking_date: date
    season_ids: Collection[str]


def check_eligibility(discount: Discount, stay: StayFacts) -> Optional[Tuple[str, str]]:
    """Return ``(warning_code, message)`` for the first failed rule, else None."""
    if not (discount.valid_from <= stay.check_in <= discount.valid_to):
        return (
            "DISCOUNT_DATE_INVALID",
            f"Discount {discount.code} is valid {discount.valid_from.isoformat()} to "
            f"{discount.valid_to.isoformat()}; check-in is {stay.check_in.isoformat()}",
        )
    if discount.minimum_nights is not None and stay.nights < discount.minimum_nights:
        return (
            "DISCOUNT_MIN_NIGHTS_NOT_MET",
            f"Discount {discount.code} requires at least {discount.minimum_nights} nights; stay is {stay.nights}",
        )
    if discount.maximum_nights is not None and stay.nights > discount.maximum_nights:
        return (
            "DISCOUNT_MAX_NIGHTS_EXCEEDED",
            f"Discount {discount.code} allows at most {discount.maximum_nights} nights; stay is {stay.nights}",
        )
    if discount.booking_window_days:
        lead_days = (stay.check_in - stay.booking_date).days
        if lead_days < discount.booking_window_days:
            return (
                "DISCOUNT_BOOKING_WINDOW_NOT_MET",
                f"Discount {discount.code} requires booking {discount.booking_window_days} days ahead; "
                f"booked {lead_days} days ahead",
            )
    blacked_out = sorted(set(discount.blackout_season_ids) & set(stay.season_ids))
    if blacked_out:
        return (
            "DISCOUNT_BLACKOUT_SEASON",
            f"Discount {discount.code} is blacked out for season(s) {', '.join(blacked_out)}",
        )
    return None


def _rank(discount: Discount) -> Decimal:
    # Fixed amounts always rank lowest; only percentages compete on value.
    if discount.discount_type is DiscountType.PERCENTAGE:
        return discount.discount_value
    return ZERO


def _compatible(a: Discount, b: Discount) -> bool:
    return b.id in a.stackable_with and a.id in b.stackable_with


def _drop(audit: AuditBuilder, discount: Discount, code: str, message: str) -> None:
    audit.warn(
        code,
        message,
        step_type=AuditStepType.DISCOUNT_REMOVED,
        inputs={"discount_id": discount.id, "discount_code": discount.code},
    )


def resolve_stacking(eligible: Sequence[Discount], audit: AuditBuilder) -> List[Discount]:
    if len(eligible) <= 1:
        return list(eligible)

    non_stackable = [d for d in eligible if not d.is_stackable]
    accepted: List[Discount] = []

    if non_stackable:
        best = reduce(lambda a, b: a if _rank(a) >= _rank(b) else b, non_stackable)
        accepted.append(best)
        for loser in non_stackable:
            if loser is not best:
                _drop(
                    audit, loser, "DISCOUNT_NOT_STACKABLE",
                    f"Discount {loser.code} cannot be combined; {best.code} applied instead",
                )
        for candidate in eligible:
            if not candidate.is_stackable:
                continue
            if _compatible(candidate, best):
                accepted.append(candidate)
            else:
                _drop(
                    audit, candidate, "DISCOUNT_STACKING_CONFLICT",
                    f"Discount {candidate.code} is not combinable with {best.code}",
                )
    else:
        for candidate in eligible:
            clash = next((a for a in accepted if not _compatible(candidate, a)), None)
            if clash is None:
                accepted.append(candidate)
            else:
                _drop(
                    audit, candidate, "DISCOUNT_STACKING_CONFLICT",
                    f"Discount {candidate.code} is not combinable with {clash.code}",
                )

    audit.add_step(
        AuditStepType.DISCOUNT_STACKING_RESOLVED,
        f"Stacking resolved: {len(accepted)} of {len(eligible)} eligible discount(s) kept",
        inputs={"eligible": [d.code for d in eligible]},
        outputs={"applied": [d.code for d in accepted]},
    )
    return accepted


def discount_base(
    base_type: DiscountBaseType, costs: PreTaxCosts
) -> Tuple[Decimal, Tuple[LineItemType, ...], Tuple[LineItemType, ...]]:
    """Base amount, the categories in it and the categories left out."""
    if base_type is DiscountBaseType.ROOM_ONLY:
        composition: Tuple[LineItemType, ...] = (LineItemType.ROOM,)
    else:
        composition = PRE_TAX_LINE_ITEMS
    by_category = costs.by_category()
    amount = sum((by_category[c] for c in composition), ZERO)
    excluded = tuple(c for c in PRE_TAX_LINE_ITEMS if c not in composition) + _TAX_ORDER
    return amount, composition, excluded


def apply_discount(
    ctx: CalculationContext, discount: Discount, costs: PreTaxCosts, audit: AuditBuilder
) -> DiscountResult:
    base, composition, excluded = discount_base(discount.base_type, costs)

    if discount.discount_type is DiscountType.PERCENTAGE:
        amount = percent_of(base, discount.discount_value)
    else:
        amount = ctx.convert(
            discount.discount_value, discount.discount_currency_code or ctx.quote_currency
        )

    if amount > base:
        audit.warn(
            "DISCOUNT_EXCEEDS_BASE",
            f"Discount {discount.code} of {money(amount)} exceeds its base of {money(base)}; capped",
            step_type=AuditStepType.DISCOUNT,
            inputs={"discount_id": discount.id, "requested": str(money(amount)), "base": str(money(base))},
            resolution_hint=EXCEEDS_BASE_HINT,
        )
        amount = base

    audit.add_step(
        AuditStepType.DISCOUNT,
        f"Discount {discount.code} ({discount.discount_type.value} {discount.discount_value})",
        inputs={
            "discount_id": discount.id,
            "base_type": discount.base_type.value,
            "base_amount": str(money(base)),
            "base_composition": [c.value for c in composition],
        },
        outputs={"discount_amount": str(money(amount))},
        result_amount=-amount,
    )
    return DiscountResult(
        discount_id=discount.id,
        discount_name=discount.name,
        discount_code=discount.code,
        discount_type=discount.discount_type,
        discount_value=discount.discount_value,
        base_type=discount.base_type,
        base_amount=base,
        discount_amount=amount,
        base_composition=composition,
        excluded_from_base=excluded,
    )


def allocate_discounts(
    discounts: Sequence[DiscountResult], costs: PreTaxCosts
) -> Dict[LineItemType, Decimal]:
    """Spread each discount over the categories of its base, pro rata to cost."""
    by_category = costs.by_category()
    allocation: Dict[LineItemType, Decimal] = {c: ZERO for c in PRE_TAX_LINE_ITEMS}
    for result in discounts:
        if result.base_amount == ZERO:
            continue
        for category in result.base_composition:
            allocation[category] += result.discount_amount * by_category[category] / result.base_amount
    return allocation


def calculate_discounts(
    ctx: CalculationContext,
    resort_id: str,
    codes: Sequence[str],
    stay: StayFacts,
    costs: PreTaxCosts,
    audit: AuditBuilder,
) -> DiscountOutcome:
    eligible: List[Discount] = []
    seen: set = set()

    for code in codes:
        discount = ctx.data.get_discount_by_code(resort_id, code)
        if discount is None:
            audit.warn(
                "DISCOUNT_CODE_NOT_FOUND",
                f"Discount code {code} not found for resort {resort_id}",
                step_type=AuditStepType.DISCOUNT_REMOVED,
                inputs={"discount_code": code},
            )
            continue
        if discount.id in seen:
            continue
        seen.add(discount.id)

        failure = check_eligibility(discount, stay)
        if failure is not None:
            _drop(audit, discount, *failure)
            continue
        eligible.append(discount)

    applied = [apply_discount(ctx, d, costs, audit) for d in resolve_stacking(eligible, audit)]
    total = sum((r.discount_amount for r in applied), ZERO)
    if applied:
        logger.debug("applied %d discount(s) totalling %s", len(applied), total)
    return DiscountOutcome(tuple(applied), total, allocate_discounts(applied, costs))
