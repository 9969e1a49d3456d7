"""Occupancy validation and above-base-occupancy charging."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Collection, List, Optional, Sequence, Tuple

from ..models import ExtraPersonCharge, GuestType, PricingMode, RoomType
from .audit import AuditBuilder, AuditStepType
from .context import CalculationContext, GuestCounts
from .currency import ZERO, money
from .errors import CalculationError, ErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExtraPersonChargeResult:
    guest_type: GuestType
    age_band_id: Optional[str]
    age_band_name: Optional[str]
    child_age: Optional[int]
    count: int
    nights: int
    per_unit_cost: Decimal
    total_cost: Decimal

    def rounded(self) -> "ExtraPersonChargeResult":
        return replace(
            self, per_unit_cost=money(self.per_unit_cost), total_cost=money(self.total_cost)
        )


def validate_occupancy(room_type: RoomType, guests: GuestCounts) -> None:
    """Raise CALC_INIT_FAILED listing every occupancy violation at once."""
    problems: List[str] = []
    if guests.adults > room_type.max_occupancy_adults:
        problems.append(
            f"{guests.adults} adults exceeds maximum of {room_type.max_occupancy_adults}"
        )
    if guests.children > room_type.max_occupancy_children:
        problems.append(
            f"{guests.children} children exceeds maximum of {room_type.max_occupancy_children}"
        )
    if guests.total_guests > room_type.max_occupancy_total:
        problems.append(
            f"{guests.total_guests} total guests exceeds maximum of {room_type.max_occupancy_total}"
        )
    if problems:
        raise CalculationError(
            ErrorCode.CALC_INIT_FAILED,
            f"Occupancy exceeds room type {room_type.name}: " + "; ".join(problems),
            {"room_type_id": room_type.id, "violations": problems},
        )


def _charge_total(charge: ExtraPersonCharge, unit_cost: Decimal, count: int, nights: int) -> Optional[Decimal]:
    if charge.pricing_mode is PricingMode.PER_PERSON_PER_NIGHT:
        return unit_cost * count * nights
    if charge.pricing_mode is PricingMode.PER_STAY:
        return unit_cost * count
    return None


def _find_charge(
    charges: Sequence[ExtraPersonCharge],
    guest_type: GuestType,
    band_id: Optional[str],
    on: date,
    season_ids: Collection[str],
) -> Optional[ExtraPersonCharge]:
    for charge in charges:
        if charge.applies_to is not guest_type:
            continue
        if guest_type is GuestType.CHILD and charge.child_age_band_id != band_id:
            continue
        if charge.season_id is not None and charge.season_id not in season_ids:
            continue
        if not charge.is_valid_on(on):
            continue
        return charge
    return None


def calculate_extra_person_charges(
    ctx: CalculationContext,
    room_type: RoomType,
    guests: GuestCounts,
    nights: int,
    check_in: date,
    season_ids: Collection[str],
    audit: AuditBuilder,
) -> Tuple[Tuple[ExtraPersonChargeResult, ...], Decimal]:
    charges = ctx.data.get_extra_person_charges(room_type.resort_id, room_type.id)
    rows: List[ExtraPersonChargeResult] = []
    total = ZERO

    extra_adults = max(0, guests.adults - room_type.base_occupancy_adults)
    if extra_adults:
        charge = _find_charge(charges, GuestType.ADULT, None, check_in, season_ids)
        if charge is None:
            logger.debug("no adult extra-person charge for room type %s", room_type.id)
        else:
            unit = ctx.convert(charge.cost_amount, charge.currency_code)
            amount = _charge_total(charge, unit, extra_adults, nights)
            if amount is not None:
                rows.append(
                    ExtraPersonChargeResult(
                        guest_type=GuestType.ADULT,
                        age_band_id=None,
                        age_band_name=None,
                        child_age=None,
                        count=extra_adults,
                        nights=nights,
                        per_unit_cost=unit,
                        total_cost=amount,
                    )
                )
                total += amount
                audit.add_step(
                    AuditStepType.EXTRA_PERSON,
                    f"{extra_adults} extra adult(s) above base occupancy",
                    inputs={
                        "extra_adults": extra_adults,
                        "pricing_mode": charge.pricing_mode.value,
                        "unit_cost": str(money(unit)),
                        "nights": nights,
                    },
                    outputs={"total_cost": str(money(amount))},
                    result_amount=amount,
                )

    # Children use up the base allowance band by band before any are extra.
    remaining_base = room_type.base_occupancy_children
    for band in guests.children_by_band.values():
        included = min(remaining_base, band.count)
        remaining_base -= included
        extra_ages = band.ages[included:]
        if not extra_ages:
            continue

        charge = _find_charge(charges, GuestType.CHILD, band.band_id, check_in, season_ids)
        if charge is None:
            logger.debug("no child extra-person charge for band %s", band.band_id)
            continue
        unit = ctx.convert(charge.cost_amount, charge.currency_code)
        band_total = _charge_total(charge, unit, len(extra_ages), nights)
        if band_total is None:
            continue

        for age in extra_ages:
            rows.append(
                ExtraPersonChargeResult(
                    guest_type=GuestType.CHILD,
                    age_band_id=band.band_id,
                    age_band_name=band.band_name,
                    child_age=age,
                    count=1,
                    nights=nights,
                    per_unit_cost=unit,
                    total_cost=_charge_total(charge, unit, 1, nights),
                )
            )
        total += band_total
        audit.add_step(
            AuditStepType.EXTRA_PERSON,
            f"{len(extra_ages)} extra child(ren) in band {band.band_name}",
            inputs={
                "age_band_id": band.band_id,
                "ages": list(extra_ages),
                "pricing_mode": charge.pricing_mode.value,
                "unit_cost": str(money(unit)),
                "nights": nights,
            },
            outputs={"total_cost": str(money(band_total))},
            result_amount=band_total,
        )

    return tuple(rows), total
