from datetime import date
from decimal import Decimal

import pytest

from conftest import RESORT_ID, build_context, build_reference_data
from resort_quote.models import Discount, DiscountBaseType, DiscountType, LineItemType
from resort_quote.rules.audit import AuditBuilder, AuditStepType
from resort_quote.rules.context import PreTaxCosts
from resort_quote.rules.discount_engine import (
    EXCEEDS_BASE_HINT,
    StayFacts,
    calculate_discounts,
    check_eligibility,
    discount_base,
    resolve_stacking,
)

STAY = StayFacts(
    check_in=date(2025, 3, 1),
    check_out=date(2025, 3, 8),
    nights=7,
    booking_date=date(2025, 1, 1),
    season_ids=["season-2025"],
)
COSTS = PreTaxCosts(room=Decimal("1000"), meal_plan=Decimal("300"), transfer=Decimal("200"))


def _discount(id_, code=None, value="10", **kw):
    defaults = dict(
        id=id_,
        resort_id=RESORT_ID,
        name=f"Offer {id_}",
        code=code or id_.upper(),
        discount_type=DiscountType.PERCENTAGE,
        discount_value=Decimal(value),
        base_type=DiscountBaseType.ROOM_ONLY,
        valid_from=date(2025, 1, 1),
        valid_to=date(2025, 12, 31),
    )
    defaults.update(kw)
    return Discount(**defaults)


def test_stacked_discounts_do_not_compound():
    a = _discount("a", is_stackable=True, stackable_with=("b",))
    b = _discount("b", is_stackable=True, stackable_with=("a",))
    ctx = build_context(build_reference_data(discounts=[a, b]))
    audit = AuditBuilder()

    outcome = calculate_discounts(ctx, RESORT_ID, ["A", "B"], STAY, COSTS, audit)

    assert [d.discount_amount for d in outcome.discounts] == [Decimal("100"), Decimal("100")]
    assert all(d.base_amount == Decimal("1000") for d in outcome.discounts)
    assert outcome.total == Decimal("200")
    assert AuditStepType.DISCOUNT_STACKING_RESOLVED in [s.step_type for s in audit.steps]
    discount_steps = [s for s in audit.steps if s.step_type is AuditStepType.DISCOUNT]
    assert [s.result_amount for s in discount_steps] == [Decimal("-100.00"), Decimal("-100.00")]


def test_pre_tax_total_base_covers_every_non_tax_category():
    amount, composition, excluded = discount_base(DiscountBaseType.PRE_TAX_TOTAL, COSTS)

    assert amount == Decimal("1500")
    assert LineItemType.TRANSFER in composition
    assert set(excluded) == {
        LineItemType.GREEN_TAX, LineItemType.SERVICE_CHARGE, LineItemType.GST, LineItemType.VAT,
    }

    room_amount, room_composition, room_excluded = discount_base(DiscountBaseType.ROOM_ONLY, COSTS)
    assert room_amount == Decimal("1000")
    assert room_composition == (LineItemType.ROOM,)
    assert LineItemType.MEAL_PLAN in room_excluded


def test_fixed_discount_is_capped_at_base_with_warning():
    fixed = _discount("big", discount_type=DiscountType.FIXED, value="1500")
    ctx = build_context(build_reference_data(discounts=[fixed]))
    audit = AuditBuilder()

    outcome = calculate_discounts(ctx, RESORT_ID, ["BIG"], STAY, COSTS, audit)

    assert outcome.discounts[0].discount_amount == Decimal("1000")
    warning = audit.warnings[0]
    assert warning.code == "DISCOUNT_EXCEEDS_BASE"
    assert warning.resolution_hint == EXCEEDS_BASE_HINT


def test_fixed_discount_in_other_currency_is_converted():
    fixed = _discount("eur", discount_type=DiscountType.FIXED, value="100", discount_currency_code="EUR")
    ctx = build_context(build_reference_data(discounts=[fixed]), rates={"EUR": Decimal("1.1")})

    outcome = calculate_discounts(ctx, RESORT_ID, ["EUR"], STAY, COSTS, AuditBuilder())

    assert outcome.total == Decimal("110.0")


@pytest.mark.parametrize(
    "overrides, code",
    [
        ({"valid_from": date(2025, 6, 1)}, "DISCOUNT_DATE_INVALID"),
        ({"minimum_nights": 10}, "DISCOUNT_MIN_NIGHTS_NOT_MET"),
        ({"maximum_nights": 5}, "DISCOUNT_MAX_NIGHTS_EXCEEDED"),
        ({"booking_window_days": 90}, "DISCOUNT_BOOKING_WINDOW_NOT_MET"),
        ({"blackout_season_ids": ("season-2025",)}, "DISCOUNT_BLACKOUT_SEASON"),
    ],
)
def test_eligibility_rules(overrides, code):
    failure = check_eligibility(_discount("x", **overrides), STAY)
    assert failure is not None
    assert failure[0] == code


def test_eligible_discount_passes_every_rule():
    discount = _discount("ok", minimum_nights=7, maximum_nights=7, booking_window_days=59)
    assert check_eligibility(discount, STAY) is None


def test_ineligible_and_unknown_codes_warn_without_blocking():
    early = _discount("early", booking_window_days=120)
    ctx = build_context(build_reference_data(discounts=[early]))
    audit = AuditBuilder()

    outcome = calculate_discounts(ctx, RESORT_ID, ["EARLY", "NOPE"], STAY, COSTS, audit)

    assert outcome.discounts == ()
    assert outcome.total == Decimal("0")
    assert [w.code for w in audit.warnings] == [
        "DISCOUNT_BOOKING_WINDOW_NOT_MET",
        "DISCOUNT_CODE_NOT_FOUND",
    ]
    assert [s.step_type for s in audit.steps] == [AuditStepType.DISCOUNT_REMOVED] * 2


def test_non_stackable_winner_is_highest_percentage():
    fixed = _discount("fixed", discount_type=DiscountType.FIXED, value="500")
    small = _discount("small", value="5")
    large = _discount("large", value="15")
    companion = _discount("comp", is_stackable=True, stackable_with=("large",))
    stranger = _discount("stranger", is_stackable=True, stackable_with=("small",))
    audit = AuditBuilder()

    accepted = resolve_stacking([fixed, small, large, companion, stranger], audit)

    assert [d.id for d in accepted] == ["large"]
    codes = [w.code for w in audit.warnings]
    assert codes.count("DISCOUNT_NOT_STACKABLE") == 2
    assert codes.count("DISCOUNT_STACKING_CONFLICT") == 2


def test_stackable_companion_needs_mutual_reference():
    winner = _discount("win", value="20", stackable_with=("comp",))
    companion = _discount("comp", is_stackable=True, stackable_with=("win",))

    accepted = resolve_stacking([companion, winner], AuditBuilder())

    assert [d.id for d in accepted] == ["win", "comp"]


def test_equal_percentages_keep_the_first_non_stackable():
    first = _discount("first", value="10")
    second = _discount("second", value="10")
    assert resolve_stacking([first, second], AuditBuilder())[0] is first


def test_greedy_stacking_in_input_order():
    a = _discount("a", is_stackable=True, stackable_with=("b", "c"))
    b = _discount("b", is_stackable=True, stackable_with=("a",))
    c = _discount("c", is_stackable=True, stackable_with=("a",))
    audit = AuditBuilder()

    accepted = resolve_stacking([a, b, c], audit)

    # c is compatible with a but not with the already accepted b
    assert [d.id for d in accepted] == ["a", "b"]
    assert [w.code for w in audit.warnings] == ["DISCOUNT_STACKING_CONFLICT"]


def test_single_discount_skips_stacking_step():
    audit = AuditBuilder()
    assert resolve_stacking([_discount("solo")], audit)[0].id == "solo"
    assert audit.steps == ()


def test_duplicate_codes_apply_once():
    only = _discount("once")
    ctx = build_context(build_reference_data(discounts=[only]))

    outcome = calculate_discounts(ctx, RESORT_ID, ["ONCE", "once"], STAY, COSTS, AuditBuilder())

    assert len(outcome.discounts) == 1


def test_allocation_spreads_pre_tax_discount_pro_rata():
    whole = _discount("whole", base_type=DiscountBaseType.PRE_TAX_TOTAL, value="10")
    ctx = build_context(build_reference_data(discounts=[whole]))

    outcome = calculate_discounts(ctx, RESORT_ID, ["WHOLE"], STAY, COSTS, AuditBuilder())

    assert outcome.allocation[LineItemType.ROOM] == Decimal("100")
    assert outcome.allocation[LineItemType.MEAL_PLAN] == Decimal("30")
    assert outcome.allocation[LineItemType.TRANSFER] == Decimal("20")
    assert sum(outcome.allocation.values()) == outcome.total
