# src/resort_quote/models.py
"""
Reference entities consumed by the pricing engine.

Everything here is read-only configuration supplied through the reference
data port. Amounts are Decimals in the entity's own currency; conversion to
the quote currency happens inside the engines against the locked rates.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple


class PricingMode(str, Enum):
    PER_PERSON_PER_NIGHT = "PER_PERSON_PER_NIGHT"
    PER_ROOM_PER_NIGHT = "PER_ROOM_PER_NIGHT"
    PER_STAY = "PER_STAY"
    PER_PERSON = "PER_PERSON"
    PER_BOOKING = "PER_BOOKING"
    PER_TRIP = "PER_TRIP"


class GuestType(str, Enum):
    ADULT = "adult"
    CHILD = "child"


class TaxType(str, Enum):
    GREEN_TAX = "GREEN_TAX"
    SERVICE_CHARGE = "SERVICE_CHARGE"
    GST = "GST"
    VAT = "VAT"


class TaxCalculationMethod(str, Enum):
    FIXED_PER_PERSON_PER_NIGHT = "FIXED_PER_PERSON_PER_NIGHT"
    PERCENTAGE = "PERCENTAGE"


class TaxAppliesTo(str, Enum):
    ACCOMMODATION_ONLY = "ACCOMMODATION_ONLY"
    SUBTOTAL_BEFORE_TAX = "SUBTOTAL_BEFORE_TAX"
    CUMULATIVE = "CUMULATIVE"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class DiscountBaseType(str, Enum):
    ROOM_ONLY = "ROOM_ONLY"
    PRE_TAX_TOTAL = "PRE_TAX_TOTAL"


class MarkupType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"


class LineItemType(str, Enum):
    ROOM = "ROOM"
    EXTRA_PERSON = "EXTRA_PERSON"
    MEAL_PLAN = "MEAL_PLAN"
    TRANSFER = "TRANSFER"
    ACTIVITY = "ACTIVITY"
    FESTIVE_SUPPLEMENT = "FESTIVE_SUPPLEMENT"
    GREEN_TAX = "GREEN_TAX"
    SERVICE_CHARGE = "SERVICE_CHARGE"
    GST = "GST"
    VAT = "VAT"

    @property
    def is_tax(self) -> bool:
        return self in TAX_LINE_ITEMS


TAX_LINE_ITEMS = frozenset(
    {LineItemType.GREEN_TAX, LineItemType.SERVICE_CHARGE, LineItemType.GST, LineItemType.VAT}
)

# Non-tax categories in the order they enter the pre-tax subtotal.
PRE_TAX_LINE_ITEMS: Tuple[LineItemType, ...] = (
    LineItemType.ROOM,
    LineItemType.EXTRA_PERSON,
    LineItemType.MEAL_PLAN,
    LineItemType.TRANSFER,
    LineItemType.ACTIVITY,
    LineItemType.FESTIVE_SUPPLEMENT,
)

TAX_TYPE_LINE_ITEM: Dict[TaxType, LineItemType] = {
    TaxType.GREEN_TAX: LineItemType.GREEN_TAX,
    TaxType.SERVICE_CHARGE: LineItemType.SERVICE_CHARGE,
    TaxType.GST: LineItemType.GST,
    TaxType.VAT: LineItemType.VAT,
}


class ValidationSeverity(str, Enum):
    BLOCKING = "BLOCKING"
    WARNING = "WARNING"


class ExchangeRateSource(str, Enum):
    SYSTEM_DEFAULT = "SYSTEM_DEFAULT"
    MANUAL_ENTRY = "MANUAL_ENTRY"


ChildCostsByBand = Mapping[str, Decimal]


def _within(on: date, valid_from: Optional[date], valid_to: Optional[date]) -> bool:
    if valid_from is not None and on < valid_from:
        return False
    if valid_to is not None and on > valid_to:
        return False
    return True


@dataclass(frozen=True)
class Resort:
    id: str
    name: str
    transfer_required: bool = False
    default_markup_configuration_id: Optional[str] = None


@dataclass(frozen=True)
class RoomType:
    id: str
    resort_id: str
    name: str
    max_occupancy_adults: int
    max_occupancy_children: int
    max_occupancy_total: int
    base_occupancy_adults: int
    base_occupancy_children: int = 0


@dataclass(frozen=True)
class ChildAgeBand:
    """Inclusive age range used for child pricing."""
    id: str
    resort_id: str
    name: str
    min_age: int
    max_age: int

    def contains(self, age: int) -> bool:
        return self.min_age <= age <= self.max_age


@dataclass(frozen=True)
class DateRange:
    start_date: date
    end_date: date  # inclusive

    def contains(self, on: date) -> bool:
        return self.start_date <= on <= self.end_date


@dataclass(frozen=True)
class Season:
    id: str
    resort_id: str
    name: str
    date_ranges: Tuple[DateRange, ...] = ()

    def covers(self, on: date) -> bool:
        return any(r.contains(on) for r in self.date_ranges)


@dataclass(frozen=True)
class Rate:
    id: str
    resort_id: str
    room_type_id: str
    season_id: str
    cost_amount: Decimal
    currency_code: str
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    def is_valid_on(self, on: date) -> bool:
        return _within(on, self.valid_from, self.valid_to)


@dataclass(frozen=True)
class ExtraPersonCharge:
    id: str
    resort_id: str
    room_type_id: str
    applies_to: GuestType
    pricing_mode: PricingMode
    cost_amount: Decimal
    currency_code: str
    child_age_band_id: Optional[str] = None
    season_id: Optional[str] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    def is_valid_on(self, on: date) -> bool:
        return _within(on, self.valid_from, self.valid_to)


@dataclass(frozen=True)
class MealPlan:
    id: str
    resort_id: str
    name: str
    code: str
    pricing_mode: PricingMode
    adult_cost: Decimal
    currency_code: str
    child_costs_by_band: ChildCostsByBand = field(default_factory=dict)
    is_default: bool = False
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    def is_valid_on(self, on: date) -> bool:
        return _within(on, self.valid_from, self.valid_to)


@dataclass(frozen=True)
class TransferType:
    id: str
    resort_id: str
    name: str
    pricing_mode: PricingMode
    currency_code: str
    code: str = ""
    adult_cost: Optional[Decimal] = None
    child_costs_by_band: ChildCostsByBand = field(default_factory=dict)
    cost_amount: Optional[Decimal] = None
    is_default: bool = False


@dataclass(frozen=True)
class Activity:
    id: str
    resort_id: str
    name: str
    pricing_mode: PricingMode
    currency_code: str
    adult_cost: Optional[Decimal] = None
    child_costs_by_band: ChildCostsByBand = field(default_factory=dict)
    cost_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class FestiveSupplement:
    id: str
    resort_id: str
    name: str
    trigger_dates: Tuple[date, ...]
    pricing_mode: PricingMode
    adult_cost: Decimal
    currency_code: str
    child_costs_by_band: ChildCostsByBand = field(default_factory=dict)
    is_mandatory: bool = True
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    def trigger_within(self, check_in: date, check_out: date) -> Optional[date]:
        """First trigger date inside ``[check_in, check_out)``, if any."""
        for trigger in sorted(self.trigger_dates):
            if check_in <= trigger < check_out and _within(trigger, self.valid_from, self.valid_to):
                return trigger
        return None


@dataclass(frozen=True)
class TaxConfiguration:
    id: str
    resort_id: str
    tax_type: TaxType
    name: str
    calculation_method: TaxCalculationMethod
    rate_value: Decimal
    applies_to: TaxAppliesTo
    calculation_order: int
    is_cumulative_base: bool = False
    currency_code: Optional[str] = None
    applies_to_children: bool = True
    child_age_threshold: Optional[int] = None
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None

    def is_valid_on(self, on: date) -> bool:
        return _within(on, self.valid_from, self.valid_to)


@dataclass(frozen=True)
class Discount:
    id: str
    resort_id: str
    name: str
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    base_type: DiscountBaseType
    valid_from: date
    valid_to: date
    discount_currency_code: Optional[str] = None
    minimum_nights: Optional[int] = None
    maximum_nights: Optional[int] = None
    booking_window_days: Optional[int] = None
    is_stackable: bool = False
    stackable_with: Tuple[str, ...] = ()
    blackout_season_ids: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MarkupConfiguration:
    id: str
    resort_id: Optional[str]
    markup_type: MarkupType
    markup_value: Decimal
    applies_to_taxes: bool = False
    excluded_components: Tuple[LineItemType, ...] = ()
    fixed_markup_currency: Optional[str] = None
