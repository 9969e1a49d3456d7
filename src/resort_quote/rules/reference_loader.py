"""Reference data registry loader and in-memory lookup adapter."""
from __future__ import annotations

import json
import logging
import os
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from ..models import (
    Activity,
    ChildAgeBand,
    DateRange,
    Discount,
    DiscountBaseType,
    DiscountType,
    ExtraPersonCharge,
    FestiveSupplement,
    GuestType,
    LineItemType,
    MarkupConfiguration,
    MarkupType,
    MealPlan,
    PricingMode,
    Rate,
    Resort,
    RoomType,
    Season,
    TaxAppliesTo,
    TaxCalculationMethod,
    TaxConfiguration,
    TaxType,
    TransferType,
)
from ..settings import settings
from .tax_engine import validate_tax_configurations

__all__ = [
    "InMemoryReferenceData",
    "MissingReferenceField",
    "ReferenceDataError",
    "load_reference_data",
    "reference_data_problems",
    "validate_reference_data",
]

logger = logging.getLogger(__name__)


class MissingReferenceField(KeyError):
    """Raised when a required field is missing from the reference registry."""

    def __init__(self, field_path: str):
        super().__init__(field_path)
        self.field_path = field_path

    def __str__(self) -> str:  # pragma: no cover - inherited KeyError repr is noisy
        return f"missing required reference field: {self.field_path}"


class ReferenceDataError(ValueError):
    """Raised when reference data fails integrity checks; lists every problem."""

    def __init__(self, problems: Sequence[str]):
        self.problems = list(problems)
        super().__init__(
            f"{len(self.problems)} reference data problem(s): " + "; ".join(self.problems)
        )


# ----------------------------------------------------------------------
# In-memory adapter
# ----------------------------------------------------------------------

@dataclass
class InMemoryReferenceData:
    resorts: List[Resort] = field(default_factory=list)
    room_types: List[RoomType] = field(default_factory=list)
    child_age_bands: List[ChildAgeBand] = field(default_factory=list)
    seasons: List[Season] = field(default_factory=list)
    rates: List[Rate] = field(default_factory=list)
    extra_person_charges: List[ExtraPersonCharge] = field(default_factory=list)
    meal_plans: List[MealPlan] = field(default_factory=list)
    transfer_types: List[TransferType] = field(default_factory=list)
    activities: List[Activity] = field(default_factory=list)
    tax_configurations: List[TaxConfiguration] = field(default_factory=list)
    festive_supplements: List[FestiveSupplement] = field(default_factory=list)
    discounts: List[Discount] = field(default_factory=list)
    markup_configurations: List[MarkupConfiguration] = field(default_factory=list)

    @staticmethod
    def _by_id(items: Iterable[Any], item_id: str) -> Optional[Any]:
        return next((item for item in items if item.id == item_id), None)

    def get_resort(self, resort_id: str) -> Optional[Resort]:
        return self._by_id(self.resorts, resort_id)

    def get_room_type(self, room_type_id: str) -> Optional[RoomType]:
        return self._by_id(self.room_types, room_type_id)

    def get_child_age_bands(self, resort_id: str) -> List[ChildAgeBand]:
        return [b for b in self.child_age_bands if b.resort_id == resort_id]

    def get_season_for_date(self, resort_id: str, on: date) -> Optional[Season]:
        return next(
            (s for s in self.seasons if s.resort_id == resort_id and s.covers(on)), None
        )

    def get_rate(self, resort_id: str, room_type_id: str, season_id: str, on: date) -> Optional[Rate]:
        for rate in self.rates:
            if (
                rate.resort_id == resort_id
                and rate.room_type_id == room_type_id
                and rate.season_id == season_id
                and rate.is_valid_on(on)
            ):
                return rate
        return None

    def get_extra_person_charges(self, resort_id: str, room_type_id: str) -> List[ExtraPersonCharge]:
        return [
            c
            for c in self.extra_person_charges
            if c.resort_id == resort_id and c.room_type_id == room_type_id
        ]

    def get_meal_plan(self, meal_plan_id: str) -> Optional[MealPlan]:
        return self._by_id(self.meal_plans, meal_plan_id)

    def get_default_meal_plan(self, resort_id: str) -> Optional[MealPlan]:
        return next(
            (m for m in self.meal_plans if m.resort_id == resort_id and m.is_default), None
        )

    def get_transfer_type(self, transfer_type_id: str) -> Optional[TransferType]:
        return self._by_id(self.transfer_types, transfer_type_id)

    def get_default_transfer_type(self, resort_id: str) -> Optional[TransferType]:
        return next(
            (t for t in self.transfer_types if t.resort_id == resort_id and t.is_default), None
        )

    def get_activity(self, activity_id: str) -> Optional[Activity]:
        return self._by_id(self.activities, activity_id)

    def get_tax_configurations(self, resort_id: str, on: date) -> List[TaxConfiguration]:
        configs = [
            t for t in self.tax_configurations if t.resort_id == resort_id and t.is_valid_on(on)
        ]
        return sorted(configs, key=lambda t: t.calculation_order)

    def get_festive_supplements(
        self, resort_id: str, check_in: date, check_out: date
    ) -> List[FestiveSupplement]:
        return [
            f
            for f in self.festive_supplements
            if f.resort_id == resort_id and f.trigger_within(check_in, check_out) is not None
        ]

    def get_discount_by_code(self, resort_id: str, code: str) -> Optional[Discount]:
        wanted = code.strip().upper()
        return next(
            (d for d in self.discounts if d.resort_id == resort_id and d.code.upper() == wanted),
            None,
        )

    def get_markup_configuration(self, resort_id: str) -> Optional[MarkupConfiguration]:
        resort = self.get_resort(resort_id)
        if resort is not None and resort.default_markup_configuration_id:
            chosen = self._by_id(self.markup_configurations, resort.default_markup_configuration_id)
            if chosen is not None:
                return chosen
        scoped = next((m for m in self.markup_configurations if m.resort_id == resort_id), None)
        if scoped is not None:
            return scoped
        # Global configurations carry no resort.
        return next((m for m in self.markup_configurations if m.resort_id is None), None)


# ----------------------------------------------------------------------
# JSON registry parsing
# ----------------------------------------------------------------------

_REQUIRED_KEYS: Dict[str, set] = {
    "resorts": {"id", "name"},
    "room_types": {
        "id", "resort_id", "name", "max_occupancy_adults", "max_occupancy_children",
        "max_occupancy_total", "base_occupancy_adults",
    },
    "child_age_bands": {"id", "resort_id", "name", "min_age", "max_age"},
    "seasons": {"id", "resort_id", "name", "date_ranges"},
    "rates": {"id", "resort_id", "room_type_id", "season_id", "cost_amount", "currency_code"},
    "extra_person_charges": {
        "id", "resort_id", "room_type_id", "applies_to", "pricing_mode", "cost_amount", "currency_code",
    },
    "meal_plans": {"id", "resort_id", "name", "code", "pricing_mode", "adult_cost", "currency_code"},
    "transfer_types": {"id", "resort_id", "name", "pricing_mode", "currency_code"},
    "activities": {"id", "resort_id", "name", "pricing_mode", "currency_code"},
    "tax_configurations": {
        "id", "resort_id", "tax_type", "name", "calculation_method", "rate_value",
        "applies_to", "calculation_order",
    },
    "festive_supplements": {
        "id", "resort_id", "name", "trigger_dates", "pricing_mode", "adult_cost", "currency_code",
    },
    "discounts": {
        "id", "resort_id", "name", "code", "discount_type", "discount_value", "base_type",
        "valid_from", "valid_to",
    },
    "markup_configurations": {"id", "markup_type", "markup_value"},
}


def _to_decimal(value: Any) -> Decimal:
    return Decimal(str(value))


def _opt_decimal(value: Any) -> Optional[Decimal]:
    return None if value is None else _to_decimal(value)


def _to_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return datetime.strptime(str(value), "%Y-%m-%d").date()


def _opt_date(value: Any) -> Optional[date]:
    return None if value in (None, "") else _to_date(value)


def _costs(value: Optional[Mapping[str, Any]]) -> Dict[str, Decimal]:
    return {str(k): _to_decimal(v) for k, v in (value or {}).items()}


def _validity(rec: Mapping[str, Any]) -> Dict[str, Optional[date]]:
    return {"valid_from": _opt_date(rec.get("valid_from")), "valid_to": _opt_date(rec.get("valid_to"))}


def _resort(rec: Mapping[str, Any]) -> Resort:
    return Resort(
        id=rec["id"],
        name=rec["name"],
        transfer_required=bool(rec.get("transfer_required", False)),
        default_markup_configuration_id=rec.get("default_markup_configuration_id"),
    )


def _room_type(rec: Mapping[str, Any]) -> RoomType:
    return RoomType(
        id=rec["id"],
        resort_id=rec["resort_id"],
        name=rec["name"],
        max_occupancy_adults=int(rec["max_occupancy_adults"]),
        max_occupancy_children=int(rec["max_occupancy_children"]),
        max_occupancy_total=int(rec["max_occupancy_total"]),
        base_occupancy_adults=int(rec["base_occupancy_adults"]),
        base_occupancy_children=int(rec.get("base_occupancy_children", 0)),
    )


def _age_band(rec: Mapping[str, Any]) -> ChildAgeBand:
    return ChildAgeBand(rec["id"], rec["resort_id"], rec["name"], int(rec["min_age"]), int(rec["max_age"]))


def _season(rec: Mapping[str, Any]) -> Season:
    ranges = []
    for i, r in enumerate(rec["date_ranges"]):
        if "start_date" not in r or "end_date" not in r:
            raise MissingReferenceField(f"seasons.{rec['id']}.date_ranges[{i}]")
        ranges.append(DateRange(_to_date(r["start_date"]), _to_date(r["end_date"])))
    return Season(rec["id"], rec["resort_id"], rec["name"], tuple(ranges))


def _rate(rec: Mapping[str, Any]) -> Rate:
    return Rate(
        id=rec["id"],
        resort_id=rec["resort_id"],
        room_type_id=rec["room_type_id"],
        season_id=rec["season_id"],
        cost_amount=_to_decimal(rec["cost_amount"]),
        currency_code=rec["currency_code"],
        **_validity(rec),
    )


def _extra_person(rec: Mapping[str, Any]) -> ExtraPersonCharge:
    return ExtraPersonCharge(
        id=rec["id"],
        resort_id=rec["resort_id"],
        room_type_id=rec["room_type_id"],
        applies_to=GuestType(rec["applies_to"]),
        pricing_mode=PricingMode(rec["pricing_mode"]),
        cost_amount=_to_decimal(rec["cost_amount"]),
        currency_code=rec["currency_code"],
        child_age_band_id=rec.get("child_age_band_id"),
        season_id=rec.get("season_id"),
        **_validity(rec),
    )


def _meal_plan(rec: Mapping[str, Any]) -> MealPlan:
    return MealPlan(
        id=rec["id"],
        resort_id=rec["resort_id"],
        name=rec["name"],
        code=rec["code"],
        pricing_mode=PricingMode(rec["pricing_mode"]),
        adult_cost=_to_decimal(rec["adult_cost"]),
        currency_code=rec["currency_code"],
        child_costs_by_band=_costs(rec.get("child_costs_by_band")),
        is_default=bool(rec.get("is_default", False)),
        **_validity(rec),
    )


def _transfer_type(rec: Mapping[str, Any]) -> TransferType:
    return TransferType(
        id=rec["id"],
        resort_id=rec["resort_id"],
        name=rec["name"],
        pricing_mode=PricingMode(rec["pricing_mode"]),
        currency_code=rec["currency_code"],
        code=rec.get("code", ""),
        adult_cost=_opt_decimal(rec.get("adult_cost")),
        child_costs_by_band=_costs(rec.get("child_costs_by_band")),
        cost_amount=_opt_decimal(rec.get("cost_amount")),
        is_default=bool(rec.get("is_default", False)),
    )


def _activity(rec: Mapping[str, Any]) -> Activity:
    return Activity(
        id=rec["id"],
        resort_id=rec["resort_id"],
        name=rec["name"],
        pricing_mode=PricingMode(rec["pricing_mode"]),
        currency_code=rec["currency_code"],
        adult_cost=_opt_decimal(rec.get("adult_cost")),
        child_costs_by_band=_costs(rec.get("child_costs_by_band")),
        cost_amount=_opt_decimal(rec.get("cost_amount")),
    )


def _tax(rec: Mapping[str, Any]) -> TaxConfiguration:
    threshold = rec.get("child_age_threshold")
    return TaxConfiguration(
        id=rec["id"],
        resort_id=rec["resort_id"],
        tax_type=TaxType(rec["tax_type"]),
        name=rec["name"],
        calculation_method=TaxCalculationMethod(rec["calculation_method"]),
        rate_value=_to_decimal(rec["rate_value"]),
        applies_to=TaxAppliesTo(rec["applies_to"]),
        calculation_order=int(rec["calculation_order"]),
        is_cumulative_base=bool(rec.get("is_cumulative_base", False)),
        currency_code=rec.get("currency_code"),
        applies_to_children=bool(rec.get("applies_to_children", True)),
        child_age_threshold=None if threshold is None else int(threshold),
        **_validity(rec),
    )


def _festive(rec: Mapping[str, Any]) -> FestiveSupplement:
    return FestiveSupplement(
        id=rec["id"],
        resort_id=rec["resort_id"],
        name=rec["name"],
        trigger_dates=tuple(_to_date(d) for d in rec["trigger_dates"]),
        pricing_mode=PricingMode(rec["pricing_mode"]),
        adult_cost=_to_decimal(rec["adult_cost"]),
        currency_code=rec["currency_code"],
        child_costs_by_band=_costs(rec.get("child_costs_by_band")),
        is_mandatory=bool(rec.get("is_mandatory", True)),
        **_validity(rec),
    )


def _discount(rec: Mapping[str, Any]) -> Discount:
    def _opt_int(key: str) -> Optional[int]:
        value = rec.get(key)
        return None if value is None else int(value)

    return Discount(
        id=rec["id"],
        resort_id=rec["resort_id"],
        name=rec["name"],
        code=rec["code"],
        discount_type=DiscountType(rec["discount_type"]),
        discount_value=_to_decimal(rec["discount_value"]),
        base_type=DiscountBaseType(rec["base_type"]),
        valid_from=_to_date(rec["valid_from"]),
        valid_to=_to_date(rec["valid_to"]),
        discount_currency_code=rec.get("discount_currency_code"),
        minimum_nights=_opt_int("minimum_nights"),
        maximum_nights=_opt_int("maximum_nights"),
        booking_window_days=_opt_int("booking_window_days"),
        is_stackable=bool(rec.get("is_stackable", False)),
        stackable_with=tuple(rec.get("stackable_with") or ()),
        blackout_season_ids=tuple(rec.get("blackout_season_ids") or ()),
    )


def _markup(rec: Mapping[str, Any]) -> MarkupConfiguration:
    return MarkupConfiguration(
        id=rec["id"],
        resort_id=rec.get("resort_id"),
        markup_type=MarkupType(rec["markup_type"]),
        markup_value=_to_decimal(rec["markup_value"]),
        applies_to_taxes=bool(rec.get("applies_to_taxes", False)),
        excluded_components=tuple(LineItemType(c) for c in rec.get("excluded_components") or ()),
        fixed_markup_currency=rec.get("fixed_markup_currency"),
    )


_BUILDERS: Dict[str, Callable[[Mapping[str, Any]], Any]] = {
    "resorts": _resort,
    "room_types": _room_type,
    "child_age_bands": _age_band,
    "seasons": _season,
    "rates": _rate,
    "extra_person_charges": _extra_person,
    "meal_plans": _meal_plan,
    "transfer_types": _transfer_type,
    "activities": _activity,
    "tax_configurations": _tax,
    "festive_supplements": _festive,
    "discounts": _discount,
    "markup_configurations": _markup,
}


def _resolve_registry_path(path: str | os.PathLike[str] | None) -> Path:
    if path is not None:
        return Path(path)
    if settings.reference_data_path:
        return Path(settings.reference_data_path)
    raise ValueError("no reference data path given and REFERENCE_DATA_PATH is not set")


@lru_cache(maxsize=None)
def _load_registry(path_str: str) -> Dict[str, Any]:
    path = Path(path_str)
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, Mapping):
        raise ValueError("reference registry must be a mapping of collection name to records")
    return dict(data)


def parse_reference_data(registry: Mapping[str, Any]) -> InMemoryReferenceData:
    collections: Dict[str, List[Any]] = {}
    for name, builder in _BUILDERS.items():
        records = registry.get(name) or []
        if not isinstance(records, list):
            raise ValueError(f"reference collection {name} must be a list")
        built = []
        for index, rec in enumerate(records):
            if not isinstance(rec, Mapping):
                raise ValueError(f"invalid record {name}[{index}]")
            for key in sorted(_REQUIRED_KEYS[name]):
                if key not in rec:
                    raise MissingReferenceField(f"{name}[{rec.get('id', index)}].{key}")
            built.append(builder(rec))
        collections[name] = built
    return InMemoryReferenceData(**collections)


def load_reference_data(
    path: str | os.PathLike[str] | None = None, *, validate: bool = True
) -> InMemoryReferenceData:
    """Load the JSON reference registry at ``path`` (or ``REFERENCE_DATA_PATH``)."""
    resolved = _resolve_registry_path(path)
    data = parse_reference_data(_load_registry(str(resolved)))
    if validate:
        validate_reference_data(data)
    logger.info(
        "loaded reference data from %s: %d resort(s), %d rate(s)",
        resolved,
        len(data.resorts),
        len(data.rates),
    )
    return data


# ----------------------------------------------------------------------
# Integrity checks
# ----------------------------------------------------------------------

def reference_data_problems(data: InMemoryReferenceData) -> List[str]:
    problems: List[str] = []

    for name in ("resorts", "room_types", "seasons", "rates"):
        if not getattr(data, name):
            problems.append(f"no {name.replace('_', ' ')} configured")

    resort_ids = {r.id for r in data.resorts}
    room_type_ids = {r.id for r in data.room_types}
    season_ids = {s.id for s in data.seasons}

    for label, items in (
        ("room type", data.room_types),
        ("rate", data.rates),
        ("tax configuration", data.tax_configurations),
        ("meal plan", data.meal_plans),
        ("transfer type", data.transfer_types),
        ("activity", data.activities),
    ):
        for item in items:
            if item.resort_id not in resort_ids:
                problems.append(f"{label} {item.id} references unknown resort {item.resort_id}")
    for rate in data.rates:
        if rate.room_type_id not in room_type_ids:
            problems.append(f"rate {rate.id} references unknown room type {rate.room_type_id}")
        if rate.season_id not in season_ids:
            problems.append(f"rate {rate.id} references unknown season {rate.season_id}")
    for config in data.markup_configurations:
        if config.resort_id is not None and config.resort_id not in resort_ids:
            problems.append(f"markup configuration {config.id} references unknown resort {config.resort_id}")
        if config.markup_value < 0:
            problems.append(f"markup configuration {config.id} has negative value {config.markup_value}")

    ranges_by_resort: Dict[str, List[tuple]] = defaultdict(list)
    for season in data.seasons:
        for r in season.date_ranges:
            ranges_by_resort[season.resort_id].append((r.start_date, r.end_date, season.id))
    for resort_id, ranges in ranges_by_resort.items():
        ranges.sort()
        for (s1, e1, id1), (s2, e2, id2) in zip(ranges, ranges[1:]):
            if s2 <= e1 and id1 != id2:
                problems.append(
                    f"seasons {id1} and {id2} overlap at resort {resort_id} from {s2.isoformat()}"
                )

    bands_by_resort: Dict[str, List[ChildAgeBand]] = defaultdict(list)
    for band in data.child_age_bands:
        if band.min_age > band.max_age:
            problems.append(f"age band {band.id} has min_age above max_age")
        bands_by_resort[band.resort_id].append(band)
    for resort_id, bands in bands_by_resort.items():
        ordered = sorted(bands, key=lambda b: b.min_age)
        for a, b in zip(ordered, ordered[1:]):
            if b.min_age <= a.max_age:
                problems.append(f"age bands {a.id} and {b.id} overlap at resort {resort_id}")

    taxes_by_resort: Dict[str, List[TaxConfiguration]] = defaultdict(list)
    for tax in data.tax_configurations:
        taxes_by_resort[tax.resort_id].append(tax)
    for resort_id, taxes in taxes_by_resort.items():
        problems.extend(f"resort {resort_id}: {p}" for p in validate_tax_configurations(taxes))

    return problems


def validate_reference_data(data: InMemoryReferenceData) -> None:
    problems = reference_data_problems(data)
    if problems:
        raise ReferenceDataError(problems)
