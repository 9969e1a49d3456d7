# src/resort_quote/rules/leg_calculator.py
"""
One resort leg, start to finish.

Stages always run in the same order:

    resolve entities -> nightly rates -> extra-person charges
    -> components (meal plan, transfer, activities, festive)
    -> pre-tax subtotal -> discounts -> taxes -> markup -> leg totals

Amounts flow between stages unrounded. The returned result is rounded once,
field by field, when it is assembled. Any CalculationError aborts the leg.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Optional, Tuple

from ..models import LineItemType
from ..schemas import LegRequest
from .audit import AuditBuilder, AuditStepType
from .components import ComponentResult, calculate_components
from .context import CalculationContext, PreTaxCosts, find_age_band, resolve_guest_counts
from .currency import PricingBreakdown, money
from .discount_engine import DiscountResult, StayFacts, calculate_discounts
from .errors import CalculationError, ErrorCode
from .extra_person import ExtraPersonChargeResult, calculate_extra_person_charges, validate_occupancy
from .markup_engine import MarkupResult, calculate_leg_markup
from .rate_lookup import NightlyRate, lookup_nightly_rates
from .tax_engine import TaxBreakdown, TaxResult, calculate_taxes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedChild:
    age: int
    age_band_id: Optional[str]
    age_band_name: str


@dataclass(frozen=True)
class LegCalculationResult:
    leg_index: int
    resort_id: str
    resort_name: str
    room_type_id: str
    room_type_name: str
    check_in_date: date
    check_out_date: date
    nights: int
    nightly_rates: Tuple[NightlyRate, ...]
    room_cost: Decimal
    extra_person_charges: Tuple[ExtraPersonChargeResult, ...]
    extra_person_cost: Decimal
    components: Tuple[ComponentResult, ...]
    component_cost: Decimal
    festive_supplements: Tuple[ComponentResult, ...]
    festive_cost: Decimal
    pre_tax_subtotal: Decimal
    discounts: Tuple[DiscountResult, ...]
    total_discount: Decimal
    post_discount_subtotal: Decimal
    taxes: Tuple[TaxResult, ...]
    total_taxes: Decimal
    tax_breakdown: TaxBreakdown
    post_tax_cost: Decimal
    markup: MarkupResult
    totals: PricingBreakdown
    resolved_children: Tuple[ResolvedChild, ...]


def calculate_leg(
    ctx: CalculationContext,
    leg: LegRequest,
    leg_index: int,
    audit: AuditBuilder,
    *,
    quote_level_markup: bool = False,
) -> LegCalculationResult:
    data = ctx.data

    resort = data.get_resort(leg.resort_id)
    if resort is None:
        raise CalculationError(
            ErrorCode.CALC_INIT_FAILED,
            f"Resort not found: {leg.resort_id}",
            {"leg_index": leg_index, "resort_id": leg.resort_id},
        )
    room_type = data.get_room_type(leg.room_type_id)
    if room_type is None or room_type.resort_id != resort.id:
        raise CalculationError(
            ErrorCode.CALC_INIT_FAILED,
            f"Room type {leg.room_type_id} not found at resort {resort.id}",
            {"leg_index": leg_index, "room_type_id": leg.room_type_id},
        )

    check_in, check_out = leg.check_in_date, leg.check_out_date
    nights = (check_out - check_in).days
    if nights <= 0:
        raise CalculationError(
            ErrorCode.CALC_INIT_FAILED,
            f"Check-out {check_out.isoformat()} must be after check-in {check_in.isoformat()}",
            {"leg_index": leg_index},
        )

    bands = data.get_child_age_bands(resort.id)
    child_ages = leg.child_ages
    guests = resolve_guest_counts(leg.adults_count, child_ages, bands)
    validate_occupancy(room_type, guests)

    resolved_children = []
    for age in child_ages:
        band = find_age_band(bands, age)
        resolved_children.append(
            ResolvedChild(age, band.id if band else None, band.name if band else "Unknown")
        )

    rates = lookup_nightly_rates(ctx, resort.id, room_type.id, check_in, check_out, audit)
    season_ids = [s.id for s in rates.seasons]

    extras, extra_cost = calculate_extra_person_charges(
        ctx, room_type, guests, nights, check_in, season_ids, audit
    )

    priced = calculate_components(
        ctx,
        resort,
        guests,
        check_in,
        check_out,
        nights,
        audit,
        meal_plan_id=leg.meal_plan_id,
        transfer_type_id=leg.transfer_type_id,
        activity_ids=leg.activity_ids,
    )

    costs = PreTaxCosts(
        room=rates.total,
        extra_person=extra_cost,
        meal_plan=priced.cost_for(LineItemType.MEAL_PLAN),
        transfer=priced.cost_for(LineItemType.TRANSFER),
        activity=priced.cost_for(LineItemType.ACTIVITY),
        festive_supplement=priced.festive_cost,
    )
    pre_tax_subtotal = costs.total
    audit.add_step(
        AuditStepType.PRE_TAX_SUBTOTAL,
        "Pre-tax subtotal",
        inputs={c.value: str(money(v)) for c, v in costs.by_category().items()},
        outputs={"pre_tax_subtotal": str(money(pre_tax_subtotal))},
        result_amount=pre_tax_subtotal,
    )

    stay = StayFacts(check_in, check_out, nights, ctx.booking_date, season_ids)
    discounts = calculate_discounts(ctx, resort.id, leg.discount_codes, stay, costs, audit)
    post_discount_subtotal = pre_tax_subtotal - discounts.total

    post_discount_costs: Dict[LineItemType, Decimal] = {
        category: amount - discounts.allocation[category]
        for category, amount in costs.by_category().items()
    }
    accommodation_base = (
        post_discount_costs[LineItemType.ROOM] + post_discount_costs[LineItemType.EXTRA_PERSON]
    )

    taxes = calculate_taxes(
        ctx,
        data.get_tax_configurations(resort.id, check_in),
        guests,
        nights,
        post_discount_subtotal,
        accommodation_base,
        audit,
    )
    post_tax_cost = post_discount_subtotal + taxes.total

    markup_config = None if quote_level_markup else data.get_markup_configuration(resort.id)
    markup = calculate_leg_markup(
        ctx,
        resort.id,
        markup_config,
        post_tax_cost,
        post_discount_costs,
        taxes.taxes,
        audit,
        quote_level=quote_level_markup,
    )

    totals = PricingBreakdown.of(post_tax_cost, markup.markup_amount)
    audit.add_step(
        AuditStepType.LEG_TOTAL,
        f"Leg {leg_index + 1} total ({resort.name})",
        inputs={"cost_amount": str(totals.cost_amount), "markup_amount": str(totals.markup_amount)},
        outputs={"sell_amount": str(totals.sell_amount)},
        result_amount=totals.sell_amount,
    )
    logger.debug("leg %d at %s: cost %s sell %s", leg_index, resort.id, totals.cost_amount, totals.sell_amount)

    return LegCalculationResult(
        leg_index=leg_index,
        resort_id=resort.id,
        resort_name=resort.name,
        room_type_id=room_type.id,
        room_type_name=room_type.name,
        check_in_date=check_in,
        check_out_date=check_out,
        nights=nights,
        nightly_rates=tuple(n.rounded() for n in rates.nightly_rates),
        room_cost=money(rates.total),
        extra_person_charges=tuple(e.rounded() for e in extras),
        extra_person_cost=money(extra_cost),
        components=tuple(c.rounded() for c in priced.components),
        component_cost=money(priced.component_cost),
        festive_supplements=tuple(c.rounded() for c in priced.festive_supplements),
        festive_cost=money(priced.festive_cost),
        pre_tax_subtotal=money(pre_tax_subtotal),
        discounts=tuple(d.rounded() for d in discounts.discounts),
        total_discount=money(discounts.total),
        post_discount_subtotal=money(post_discount_subtotal),
        taxes=tuple(t.rounded() for t in taxes.taxes),
        total_taxes=money(taxes.total),
        tax_breakdown=taxes.breakdown.rounded(),
        post_tax_cost=totals.cost_amount,
        markup=markup.rounded(),
        totals=totals,
        resolved_children=tuple(resolved_children),
    )
