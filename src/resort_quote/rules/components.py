"""Meal plan, transfer, activity and festive supplement pricing."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models import (
    Activity,
    ChildCostsByBand,
    FestiveSupplement,
    LineItemType,
    MealPlan,
    PricingMode,
    Resort,
    TransferType,
)
from .audit import AuditBuilder, AuditStepType
from .context import CalculationContext, GuestCounts
from .currency import ZERO, money
from .errors import CalculationError, ErrorCode

logger = logging.getLogger(__name__)

_AUDIT_TYPE = {
    LineItemType.MEAL_PLAN: AuditStepType.MEAL_PLAN,
    LineItemType.TRANSFER: AuditStepType.TRANSFER,
    LineItemType.ACTIVITY: AuditStepType.ACTIVITY,
    LineItemType.FESTIVE_SUPPLEMENT: AuditStepType.FESTIVE_SUPPLEMENT,
}


@dataclass(frozen=True)
class ComponentResult:
    reference_id: str
    line_item_type: LineItemType
    description: str
    cost_amount: Decimal
    quantity_detail: Dict[str, Any] = field(default_factory=dict)

    def rounded(self) -> "ComponentResult":
        detail = {
            k: money(v) if isinstance(v, Decimal) else v for k, v in self.quantity_detail.items()
        }
        return replace(self, cost_amount=money(self.cost_amount), quantity_detail=detail)


@dataclass(frozen=True)
class ComponentsResult:
    components: Tuple[ComponentResult, ...]
    festive_supplements: Tuple[ComponentResult, ...]

    @property
    def component_cost(self) -> Decimal:
        return sum((c.cost_amount for c in self.components), ZERO)

    @property
    def festive_cost(self) -> Decimal:
        return sum((c.cost_amount for c in self.festive_supplements), ZERO)

    def cost_for(self, line_item_type: LineItemType) -> Decimal:
        items = self.festive_supplements if line_item_type is LineItemType.FESTIVE_SUPPLEMENT else self.components
        return sum((c.cost_amount for c in items if c.line_item_type is line_item_type), ZERO)


class _Lines:
    """Collects line items for one component and mirrors each into the audit trail."""

    def __init__(self, audit: AuditBuilder, reference_id: str, line_item_type: LineItemType, **common: Any):
        self.audit = audit
        self.reference_id = reference_id
        self.line_item_type = line_item_type
        self.common = common
        self.items: List[ComponentResult] = []

    def add(self, description: str, amount: Decimal, **detail: Any) -> None:
        detail = {**self.common, **detail}
        self.items.append(
            ComponentResult(self.reference_id, self.line_item_type, description, amount, detail)
        )
        self.audit.add_step(
            _AUDIT_TYPE[self.line_item_type],
            description,
            inputs={"reference_id": self.reference_id, **{k: _plain(v) for k, v in detail.items()}},
            outputs={"cost_amount": str(money(amount))},
            result_amount=amount,
        )


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    return value


def _add_per_person(
    ctx: CalculationContext,
    lines: _Lines,
    name: str,
    adult_cost: Optional[Decimal],
    child_costs: ChildCostsByBand,
    currency: str,
    guests: GuestCounts,
    multiplier: int = 1,
    *,
    skip_free_adults: bool = False,
) -> None:
    if adult_cost is not None and guests.adults > 0:
        rate = ctx.convert(adult_cost, currency)
        if not (skip_free_adults and rate == ZERO):
            lines.add(
                f"{name} - adults x{guests.adults}",
                rate * guests.adults * multiplier,
                guest_type="adult",
                count=guests.adults,
                unit_cost=rate,
                multiplier=multiplier,
            )

    for band in guests.children_by_band.values():
        band_cost = child_costs.get(band.band_id)
        if not band_cost:
            continue
        rate = ctx.convert(Decimal(band_cost), currency)
        lines.add(
            f"{name} - {band.band_name} x{band.count}",
            rate * band.count * multiplier,
            guest_type="child",
            age_band_id=band.band_id,
            count=band.count,
            unit_cost=rate,
            multiplier=multiplier,
        )


def price_meal_plan(
    ctx: CalculationContext,
    meal_plan: MealPlan,
    guests: GuestCounts,
    nights: int,
    audit: AuditBuilder,
) -> List[ComponentResult]:
    lines = _Lines(audit, meal_plan.id, LineItemType.MEAL_PLAN, meal_plan_code=meal_plan.code)
    mode = meal_plan.pricing_mode
    label = f"Meal plan {meal_plan.name}"

    if mode is PricingMode.PER_PERSON_PER_NIGHT:
        _add_per_person(
            ctx, lines, label, meal_plan.adult_cost, meal_plan.child_costs_by_band,
            meal_plan.currency_code, guests, nights,
        )
    elif mode is PricingMode.PER_PERSON:
        _add_per_person(
            ctx, lines, label, meal_plan.adult_cost, meal_plan.child_costs_by_band,
            meal_plan.currency_code, guests,
        )
    elif mode is PricingMode.PER_STAY:
        rate = ctx.convert(meal_plan.adult_cost, meal_plan.currency_code)
        lines.add(f"{label} - per stay", rate, pricing_mode=mode.value)
    elif mode is PricingMode.PER_ROOM_PER_NIGHT:
        rate = ctx.convert(meal_plan.adult_cost, meal_plan.currency_code)
        lines.add(f"{label} - per room x{nights} nights", rate * nights, pricing_mode=mode.value, nights=nights)
    else:
        logger.debug("meal plan %s: pricing mode %s not priced", meal_plan.id, mode.value)
    return lines.items


def _price_flat_or_per_person(
    ctx: CalculationContext,
    lines: _Lines,
    name: str,
    mode: PricingMode,
    flat_modes: Sequence[PricingMode],
    adult_cost: Optional[Decimal],
    child_costs: ChildCostsByBand,
    cost_amount: Optional[Decimal],
    currency: str,
    guests: GuestCounts,
) -> None:
    if mode is PricingMode.PER_PERSON:
        _add_per_person(ctx, lines, name, adult_cost, child_costs, currency, guests)
    elif mode in flat_modes:
        if cost_amount is None:
            return
        lines.add(f"{name} - {mode.value.lower().replace('_', ' ')}", ctx.convert(cost_amount, currency), pricing_mode=mode.value)
    else:
        logger.debug("%s: pricing mode %s not priced", name, mode.value)


def price_transfer(
    ctx: CalculationContext, transfer: TransferType, guests: GuestCounts, audit: AuditBuilder
) -> List[ComponentResult]:
    lines = _Lines(audit, transfer.id, LineItemType.TRANSFER)
    _price_flat_or_per_person(
        ctx, lines, f"Transfer {transfer.name}", transfer.pricing_mode,
        (PricingMode.PER_BOOKING, PricingMode.PER_TRIP),
        transfer.adult_cost, transfer.child_costs_by_band, transfer.cost_amount,
        transfer.currency_code, guests,
    )
    return lines.items


def price_activity(
    ctx: CalculationContext, activity: Activity, guests: GuestCounts, audit: AuditBuilder
) -> List[ComponentResult]:
    lines = _Lines(audit, activity.id, LineItemType.ACTIVITY)
    _price_flat_or_per_person(
        ctx, lines, f"Activity {activity.name}", activity.pricing_mode,
        (PricingMode.PER_BOOKING,),
        activity.adult_cost, activity.child_costs_by_band, activity.cost_amount,
        activity.currency_code, guests,
    )
    return lines.items


def price_festive_supplement(
    ctx: CalculationContext,
    supplement: FestiveSupplement,
    trigger: date,
    guests: GuestCounts,
    audit: AuditBuilder,
) -> List[ComponentResult]:
    lines = _Lines(
        audit,
        supplement.id,
        LineItemType.FESTIVE_SUPPLEMENT,
        trigger_date=trigger.isoformat(),
        is_mandatory=supplement.is_mandatory,
    )
    label = f"{supplement.name} ({trigger.isoformat()})"

    if supplement.pricing_mode is PricingMode.PER_PERSON:
        _add_per_person(
            ctx, lines, label, supplement.adult_cost, supplement.child_costs_by_band,
            supplement.currency_code, guests, skip_free_adults=True,
        )
    elif supplement.pricing_mode is PricingMode.PER_ROOM_PER_NIGHT:
        rate = ctx.convert(supplement.adult_cost, supplement.currency_code)
        lines.add(f"{label} - per room", rate, pricing_mode=supplement.pricing_mode.value)
    else:
        logger.debug("festive supplement %s: pricing mode %s not priced", supplement.id, supplement.pricing_mode.value)
    return lines.items


def _missing(kind: str, ref_id: str) -> CalculationError:
    return CalculationError(
        ErrorCode.CALC_INIT_FAILED,
        f"{kind} not found: {ref_id}",
        {"entity": kind.lower().replace(" ", "_"), "id": ref_id},
    )


def calculate_components(
    ctx: CalculationContext,
    resort: Resort,
    guests: GuestCounts,
    check_in: date,
    check_out: date,
    nights: int,
    audit: AuditBuilder,
    *,
    meal_plan_id: Optional[str] = None,
    transfer_type_id: Optional[str] = None,
    activity_ids: Sequence[str] = (),
) -> ComponentsResult:
    data = ctx.data
    components: List[ComponentResult] = []

    if meal_plan_id:
        meal_plan = data.get_meal_plan(meal_plan_id)
        if meal_plan is None:
            raise _missing("Meal plan", meal_plan_id)
    else:
        meal_plan = data.get_default_meal_plan(resort.id)
    if meal_plan is not None and not meal_plan.is_valid_on(check_in):
        logger.info("meal plan %s not offered on %s; skipped", meal_plan.id, check_in.isoformat())
        meal_plan = None
    if meal_plan is not None:
        components.extend(price_meal_plan(ctx, meal_plan, guests, nights, audit))

    if transfer_type_id:
        transfer = data.get_transfer_type(transfer_type_id)
        if transfer is None:
            raise _missing("Transfer type", transfer_type_id)
    else:
        transfer = data.get_default_transfer_type(resort.id)
    if transfer is not None:
        components.extend(price_transfer(ctx, transfer, guests, audit))
    elif resort.transfer_required:
        audit.warn(
            "TRANSFER_REQUIRED",
            f"Resort {resort.name} requires a transfer but none was selected or configured as default",
            inputs={"resort_id": resort.id},
            resolution_hint="Select a transfer type for this leg.",
        )

    for activity_id in activity_ids:
        activity = data.get_activity(activity_id)
        if activity is None:
            raise _missing("Activity", activity_id)
        components.extend(price_activity(ctx, activity, guests, audit))

    festive: List[ComponentResult] = []
    for supplement in data.get_festive_supplements(resort.id, check_in, check_out):
        trigger = supplement.trigger_within(check_in, check_out)
        if trigger is None:
            continue
        festive.extend(price_festive_supplement(ctx, supplement, trigger, guests, audit))

    result = ComponentsResult(tuple(components), tuple(festive))
    logger.debug(
        "components %s, festive %s for resort %s", result.component_cost, result.festive_cost, resort.id
    )
    return result
