"""Per-night season and room-rate resolution."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Tuple

from ..models import Season
from .audit import AuditBuilder, AuditStepType
from .context import CalculationContext
from .currency import ZERO, money
from .errors import CalculationError, ErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NightlyRate:
    date: date
    season_id: str
    season_name: str
    rate_id: str
    source_cost: Decimal
    source_currency: str
    cost_amount: Decimal  # quote currency

    def rounded(self) -> "NightlyRate":
        return replace(self, source_cost=money(self.source_cost), cost_amount=money(self.cost_amount))


@dataclass(frozen=True)
class RateLookupResult:
    nightly_rates: Tuple[NightlyRate, ...]
    total: Decimal
    seasons: Tuple[Season, ...]


def stay_nights(check_in: date, check_out: date) -> List[date]:
    """Every night in ``[check_in, check_out)``."""
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


def lookup_nightly_rates(
    ctx: CalculationContext,
    resort_id: str,
    room_type_id: str,
    check_in: date,
    check_out: date,
    audit: AuditBuilder,
) -> RateLookupResult:
    data = ctx.data
    nightly: List[NightlyRate] = []
    seasons: Dict[str, Season] = {}
    total = ZERO

    for night in stay_nights(check_in, check_out):
        season = data.get_season_for_date(resort_id, night)
        if season is None:
            raise CalculationError(
                ErrorCode.CALC_SEASON_NOT_FOUND,
                f"No season covers {night.isoformat()} at resort {resort_id}",
                {"resort_id": resort_id, "date": night.isoformat()},
            )

        rate = data.get_rate(resort_id, room_type_id, season.id, night)
        if rate is None:
            raise CalculationError(
                ErrorCode.CALC_RATE_NOT_FOUND,
                f"No rate for room type {room_type_id} in season {season.name} on {night.isoformat()}",
                {
                    "resort_id": resort_id,
                    "room_type_id": room_type_id,
                    "season_id": season.id,
                    "date": night.isoformat(),
                },
            )

        cost = ctx.convert(rate.cost_amount, rate.currency_code)
        nightly.append(
            NightlyRate(
                date=night,
                season_id=season.id,
                season_name=season.name,
                rate_id=rate.id,
                source_cost=rate.cost_amount,
                source_currency=rate.currency_code,
                cost_amount=cost,
            )
        )
        seasons.setdefault(season.id, season)
        total += cost

        audit.add_step(
            AuditStepType.RATE_LOOKUP,
            f"Room rate for {night.isoformat()} ({season.name})",
            inputs={
                "date": night.isoformat(),
                "season_id": season.id,
                "rate_id": rate.id,
                "source_cost": str(rate.cost_amount),
                "source_currency": rate.currency_code,
            },
            outputs={"cost_amount": str(money(cost))},
            result_amount=cost,
        )

    logger.debug("room cost %s over %d night(s) for %s", total, len(nightly), room_type_id)
    return RateLookupResult(tuple(nightly), total, tuple(seasons.values()))
