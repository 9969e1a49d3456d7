from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from resort_quote.models import (
    ChildAgeBand,
    DateRange,
    MarkupConfiguration,
    MarkupType,
    Rate,
    Resort,
    RoomType,
    Season,
)
from resort_quote.rules.audit import AuditBuilder
from resort_quote.rules.context import CalculationContext
from resort_quote.rules.currency import lock_exchange_rates
from resort_quote.rules.reference_loader import InMemoryReferenceData

RESORT_ID = "resort-azure"
ROOM_ID = "room-beach-villa"


def build_reference_data(**overrides) -> InMemoryReferenceData:
    """A single-resort catalogue priced at 200 USD per night all year."""
    data = dict(
        resorts=[Resort(id=RESORT_ID, name="Azure Lagoon")],
        room_types=[
            RoomType(
                id=ROOM_ID,
                resort_id=RESORT_ID,
                name="Beach Villa",
                max_occupancy_adults=4,
                max_occupancy_children=2,
                max_occupancy_total=5,
                base_occupancy_adults=2,
                base_occupancy_children=1,
            )
        ],
        child_age_bands=[
            ChildAgeBand("band-infant", RESORT_ID, "Infant", 0, 2),
            ChildAgeBand("band-child", RESORT_ID, "Child", 3, 11),
        ],
        seasons=[
            Season(
                "season-2025",
                RESORT_ID,
                "All year",
                (DateRange(date(2025, 1, 1), date(2025, 12, 31)),),
            )
        ],
        rates=[
            Rate(
                id="rate-villa-2025",
                resort_id=RESORT_ID,
                room_type_id=ROOM_ID,
                season_id="season-2025",
                cost_amount=Decimal("200"),
                currency_code="USD",
            )
        ],
        markup_configurations=[
            MarkupConfiguration(
                id="markup-azure",
                resort_id=RESORT_ID,
                markup_type=MarkupType.PERCENTAGE,
                markup_value=Decimal("10"),
            )
        ],
    )
    data.update(overrides)
    return InMemoryReferenceData(**data)


def build_context(data=None, *, currency="USD", rates=None, booking_date=date(2025, 1, 15)) -> CalculationContext:
    locked = lock_exchange_rates(currency, rates)
    return CalculationContext(
        quote_currency=locked.quote_currency,
        locked_rates=locked,
        booking_date=booking_date,
        data=data if data is not None else build_reference_data(),
    )


def leg_payload(**overrides) -> dict:
    payload = {
        "resort_id": RESORT_ID,
        "room_type_id": ROOM_ID,
        "check_in_date": "2025-03-01",
        "check_out_date": "2025-03-05",
        "adults_count": 2,
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def reference_data() -> InMemoryReferenceData:
    return build_reference_data()


@pytest.fixture
def ctx(reference_data) -> CalculationContext:
    return build_context(reference_data)


@pytest.fixture
def audit() -> AuditBuilder:
    return AuditBuilder()
