"""Per-call calculation context, guest resolution and the reference data port."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Optional, Protocol, Sequence, Tuple

from ..models import (
    Activity,
    ChildAgeBand,
    Discount,
    ExchangeRateSource,
    ExtraPersonCharge,
    FestiveSupplement,
    LineItemType,
    MarkupConfiguration,
    MealPlan,
    Rate,
    Resort,
    RoomType,
    Season,
    TaxConfiguration,
    TransferType,
)
from .currency import LockedRates, to_quote_currency


class ReferenceData(Protocol):
    """Read-only lookups the engine needs. Implemented outside the engine."""

    def get_resort(self, resort_id: str) -> Optional[Resort]: ...

    def get_room_type(self, room_type_id: str) -> Optional[RoomType]: ...

    def get_child_age_bands(self, resort_id: str) -> Sequence[ChildAgeBand]: ...

    def get_season_for_date(self, resort_id: str, on: date) -> Optional[Season]: ...

    def get_rate(
        self, resort_id: str, room_type_id: str, season_id: str, on: date
    ) -> Optional[Rate]: ...

    def get_extra_person_charges(
        self, resort_id: str, room_type_id: str
    ) -> Sequence[ExtraPersonCharge]: ...

    def get_meal_plan(self, meal_plan_id: str) -> Optional[MealPlan]: ...

    def get_default_meal_plan(self, resort_id: str) -> Optional[MealPlan]: ...

    def get_transfer_type(self, transfer_type_id: str) -> Optional[TransferType]: ...

    def get_default_transfer_type(self, resort_id: str) -> Optional[TransferType]: ...

    def get_activity(self, activity_id: str) -> Optional[Activity]: ...

    def get_tax_configurations(self, resort_id: str, on: date) -> Sequence[TaxConfiguration]: ...

    def get_festive_supplements(
        self, resort_id: str, check_in: date, check_out: date
    ) -> Sequence[FestiveSupplement]: ...

    def get_discount_by_code(self, resort_id: str, code: str) -> Optional[Discount]: ...

    def get_markup_configuration(self, resort_id: str) -> Optional[MarkupConfiguration]: ...


@dataclass(frozen=True)
class CalculationContext:
    """Created once per calculation call and never mutated."""
    quote_currency: str
    locked_rates: LockedRates
    booking_date: date
    data: ReferenceData
    pass_through_child_age_threshold: int = 2

    @property
    def exchange_rates(self) -> Dict[str, Decimal]:
        return self.locked_rates.as_dict()

    @property
    def exchange_rate_timestamp(self) -> datetime:
        return self.locked_rates.locked_at

    @property
    def exchange_rate_source(self) -> ExchangeRateSource:
        return self.locked_rates.source

    def convert(self, amount: Decimal, currency_code: str) -> Decimal:
        return to_quote_currency(amount, currency_code, self.locked_rates)


@dataclass(frozen=True)
class BandCount:
    band_id: str
    band_name: str
    count: int
    ages: Tuple[int, ...]


@dataclass(frozen=True)
class GuestCounts:
    adults: int
    children_by_band: Dict[str, BandCount] = field(default_factory=dict)
    child_ages: Tuple[int, ...] = ()
    total_guests: int = 0

    @property
    def children(self) -> int:
        return len(self.child_ages)

    def eligible_above(self, threshold: int, *, include_children: bool = True) -> int:
        """Adults plus children strictly older than ``threshold``."""
        if not include_children:
            return self.adults
        return self.adults + sum(1 for age in self.child_ages if age > threshold)


def find_age_band(bands: Sequence[ChildAgeBand], age: int) -> Optional[ChildAgeBand]:
    # Linear scan; resorts configure a handful of bands.
    for band in bands:
        if band.contains(age):
            return band
    return None


def resolve_guest_counts(
    adults: int,
    child_ages: Sequence[int],
    age_bands: Sequence[ChildAgeBand],
) -> GuestCounts:
    """
    Group children by age band, keeping the bands in their configured order.

    Children whose age falls outside every band count towards totals but are
    not priced by band.
    """
    grouped: Dict[str, list] = {}
    for age in child_ages:
        band = find_age_band(age_bands, age)
        if band is not None:
            grouped.setdefault(band.id, []).append(age)

    by_band: Dict[str, BandCount] = {}
    for band in age_bands:
        ages = grouped.get(band.id)
        if ages:
            by_band[band.id] = BandCount(band.id, band.name, len(ages), tuple(ages))

    ages_all = tuple(child_ages)
    return GuestCounts(
        adults=adults,
        children_by_band=by_band,
        child_ages=ages_all,
        total_guests=adults + len(ages_all),
    )


@dataclass(frozen=True)
class PreTaxCosts:
    """Original, un-discounted cost per non-tax category for one leg."""
    room: Decimal = Decimal("0")
    extra_person: Decimal = Decimal("0")
    meal_plan: Decimal = Decimal("0")
    transfer: Decimal = Decimal("0")
    activity: Decimal = Decimal("0")
    festive_supplement: Decimal = Decimal("0")

    def by_category(self) -> Dict[LineItemType, Decimal]:
        return {
            LineItemType.ROOM: self.room,
            LineItemType.EXTRA_PERSON: self.extra_person,
            LineItemType.MEAL_PLAN: self.meal_plan,
            LineItemType.TRANSFER: self.transfer,
            LineItemType.ACTIVITY: self.activity,
            LineItemType.FESTIVE_SUPPLEMENT: self.festive_supplement,
        }

    @property
    def total(self) -> Decimal:
        return sum(self.by_category().values(), Decimal("0"))
