from dataclasses import fields, replace
from datetime import date
from decimal import Decimal

import pytest

from conftest import RESORT_ID, build_reference_data, leg_payload
from resort_quote.models import (
    DateRange,
    MarkupConfiguration,
    MarkupType,
    Rate,
    Resort,
    RoomType,
    Season,
    TaxAppliesTo,
    TaxCalculationMethod,
    TaxConfiguration,
    TaxType,
    ValidationSeverity,
)
from resort_quote.rules.audit import AuditStepType
from resort_quote.rules.errors import CalculationError, ErrorCode
from resort_quote.rules.quote_calculator import (
    QuoteCalculator,
    QuoteTotals,
    calculate_quote,
    try_calculate_quote,
)
from resort_quote.rules.reference_loader import InMemoryReferenceData
from resort_quote.rules.result import Err, Ok
from resort_quote.schemas import QuoteRequest

CORAL_ID = "resort-coral"
CORAL_ROOM = "room-water-villa"


def _request(legs=None, **overrides):
    payload = {
        "client_name": "A. Traveller",
        "currency_code": "usd",
        "booking_date": "2025-01-15",
        "legs": legs or [leg_payload()],
    }
    payload.update(overrides)
    return QuoteRequest.model_validate(payload)


def _two_resort_data():
    base = build_reference_data()
    return build_reference_data(
        resorts=base.resorts + [Resort(id=CORAL_ID, name="Coral Atoll")],
        room_types=base.room_types
        + [
            RoomType(
                id=CORAL_ROOM,
                resort_id=CORAL_ID,
                name="Water Villa",
                max_occupancy_adults=2,
                max_occupancy_children=1,
                max_occupancy_total=3,
                base_occupancy_adults=2,
                base_occupancy_children=0,
            )
        ],
        seasons=base.seasons
        + [Season("coral-2025", CORAL_ID, "All year", (DateRange(date(2025, 1, 1), date(2025, 12, 31)),))],
        rates=base.rates + [Rate("rate-coral", CORAL_ID, CORAL_ROOM, "coral-2025", Decimal("300"), "USD")],
        markup_configurations=base.markup_configurations
        + [MarkupConfiguration("markup-coral", CORAL_ID, MarkupType.PERCENTAGE, Decimal("20"))],
    )


def _coral_leg():
    return leg_payload(
        resort_id=CORAL_ID,
        room_type_id=CORAL_ROOM,
        check_in_date="2025-03-05",
        check_out_date="2025-03-08",
    )


def test_single_leg_room_only_quote(reference_data):
    result = calculate_quote(_request(), reference_data)

    assert result.success
    assert result.currency_code == "USD"
    leg = result.legs[0]
    assert leg.nights == 4
    assert leg.room_cost == Decimal("800.00")
    assert leg.markup.markup_amount == Decimal("80.00")
    assert leg.totals.sell_amount == Decimal("880.00")

    totals = result.totals
    assert totals.total_cost == Decimal("800.00")
    assert totals.total_markup == Decimal("80.00")
    assert totals.total_sell == Decimal("880.00")
    assert totals.margin_percentage == Decimal("9.09")
    assert totals.markup_percentage == Decimal("10.00")
    assert result.warnings == ()


def test_quote_level_markup_replaces_resort_markup(reference_data):
    request = _request(quote_level_markup={"markup_value": "150", "override_reason": "VIP"})

    result = calculate_quote(request, reference_data)

    assert result.success
    assert result.legs[0].markup.markup_amount == Decimal("0.00")
    assert result.totals.legs_sell == Decimal("800.00")
    assert result.totals.total_markup == Decimal("150.00")
    assert result.totals.total_sell == Decimal("950.00")
    assert result.quote_level_markup.override_reason == "VIP"
    assert AuditStepType.QUOTE_LEVEL_MARKUP in [s.step_type for s in result.audit_steps]


def test_negative_quote_level_markup_fails(reference_data):
    result = calculate_quote(_request(quote_level_markup={"markup_value": "-1"}), reference_data)

    assert not result.success
    assert result.warnings[0].code == ErrorCode.CALC_MARKUP_INVALID.value


def test_occupancy_violation_yields_blocking_failure(reference_data):
    result = calculate_quote(_request([leg_payload(adults_count=5)]), reference_data)

    assert not result.success
    assert result.legs == ()
    assert result.totals == QuoteTotals.zero()
    assert len(result.warnings) == 1
    blocking = result.warnings[0]
    assert blocking.code == "CALC_INIT_FAILED"
    assert blocking.severity is ValidationSeverity.BLOCKING
    assert blocking.leg_index == 0
    assert blocking.resolution_hint == "Check that all referenced entities exist."
    assert result.audit_steps[-1].step_type is AuditStepType.CALCULATION_FAILED


def test_failure_in_second_leg_reports_its_index():
    data = _two_resort_data()
    legs = [leg_payload(), leg_payload(resort_id=CORAL_ID, room_type_id="room-missing")]

    result = calculate_quote(_request(legs), data)

    assert not result.success
    assert result.warnings[0].leg_index == 1
    # audit of the first leg is kept up to the failure
    assert any(s.leg_index == 0 for s in result.audit_steps)


def test_inter_resort_transfer_uses_destination_markup():
    request = _request(
        [leg_payload(), _coral_leg()],
        inter_resort_transfers=[
            {"transfer_description": "Seaplane hop", "cost_amount": "500", "currency_code": "USD"},
            {"transfer_description": "Nowhere", "cost_amount": "999", "currency_code": "USD"},
        ],
    )

    result = calculate_quote(request, _two_resort_data())

    assert result.success
    assert len(result.inter_resort_transfers) == 1
    irt = result.inter_resort_transfers[0]
    assert (irt.from_leg_index, irt.to_leg_index) == (0, 1)
    assert irt.markup_amount == Decimal("100.00")
    assert irt.markup_config_id == "markup-coral"

    totals = result.totals
    assert totals.legs_cost == Decimal("1700.00")
    assert totals.legs_markup == Decimal("260.00")
    assert totals.irt_sell == Decimal("600.00")
    assert totals.total_sell == Decimal("2560.00")
    assert totals.total_cost + totals.total_markup == totals.total_sell


def test_quote_level_markup_zeroes_transfer_markup():
    request = _request(
        [leg_payload(), _coral_leg()],
        inter_resort_transfers=[
            {"transfer_description": "Seaplane hop", "cost_amount": "500", "currency_code": "USD"},
        ],
        quote_level_markup={"markup_value": "200"},
    )

    result = calculate_quote(request, _two_resort_data())

    assert result.inter_resort_transfers[0].markup_amount == Decimal("0.00")
    assert result.totals.total_sell == Decimal("2400.00")


def test_non_fatal_warnings_reach_the_result(reference_data):
    result = calculate_quote(_request([leg_payload(discount_codes=["GHOST"])]), reference_data)

    assert result.success
    assert [w.code for w in result.warnings] == ["DISCOUNT_CODE_NOT_FOUND"]
    assert result.warnings[0].leg_index == 0
    assert result.warnings[0].severity is ValidationSeverity.WARNING


def test_audit_steps_are_numbered_across_legs():
    result = calculate_quote(_request([leg_payload(), _coral_leg()]), _two_resort_data())

    numbers = [s.step_number for s in result.audit_steps]
    assert numbers == list(range(1, len(numbers) + 1))
    assert result.audit_steps[0].step_type is AuditStepType.QUOTE_AGGREGATION
    assert result.audit_steps[-1].step_type is AuditStepType.QUOTE_AGGREGATION
    assert {s.leg_index for s in result.audit_steps} == {None, 0, 1}


def test_manual_rates_are_locked_on_the_result(reference_data):
    result = calculate_quote(_request(manual_exchange_rates={"eur": "1.1"}), reference_data)

    assert result.exchange_rates["EUR"] == Decimal("1.1")
    assert result.exchange_rate_source.value == "MANUAL_ENTRY"


def test_try_calculate_returns_err(reference_data):
    outcome = try_calculate_quote(_request([leg_payload(room_type_id="room-missing")]), reference_data)

    assert isinstance(outcome, Err)
    assert not outcome.ok
    assert outcome.error.code is ErrorCode.CALC_INIT_FAILED


def test_try_calculate_returns_ok(reference_data):
    outcome = try_calculate_quote(_request(), reference_data)

    assert isinstance(outcome, Ok)
    assert outcome.value.totals.total_sell == Decimal("880.00")


def test_negative_total_is_rejected_by_verification(reference_data):
    calculator = QuoteCalculator(reference_data)
    totals = QuoteTotals(total_cost=Decimal("-10.00"), total_sell=Decimal("-10.00"))

    with pytest.raises(CalculationError) as excinfo:
        calculator._verify([], totals)
    assert excinfo.value.code is ErrorCode.CALC_NEGATIVE_FINAL_AMOUNT


def test_drift_beyond_tolerance_fails_verification(reference_data):
    calculator = QuoteCalculator(reference_data, verification_tolerance=Decimal("0.01"))
    totals = QuoteTotals(total_cost=Decimal("100"), total_markup=Decimal("10"), total_sell=Decimal("110.02"))

    with pytest.raises(CalculationError) as excinfo:
        calculator._verify([], totals)
    assert excinfo.value.code is ErrorCode.CALC_VERIFICATION_FAILED


def test_to_dict_is_json_ready(reference_data):
    payload = calculate_quote(_request(), reference_data).to_dict()

    assert payload["success"] is True
    assert payload["totals"]["total_sell"] == "880.00"
    assert payload["legs"][0]["check_in_date"] == "2025-03-01"
    assert payload["exchange_rate_source"] == "SYSTEM_DEFAULT"
    assert payload["audit_steps"][0]["step_type"] == AuditStepType.QUOTE_AGGREGATION.value


def _percentage_tax(tax_type, rate):
    return TaxConfiguration(
        id=f"tax-{tax_type.value.lower()}",
        resort_id=RESORT_ID,
        tax_type=tax_type,
        name=tax_type.value,
        calculation_method=TaxCalculationMethod.PERCENTAGE,
        rate_value=Decimal(rate),
        applies_to=TaxAppliesTo.SUBTOTAL_BEFORE_TAX,
        calculation_order=1 if tax_type is TaxType.SERVICE_CHARGE else 2,
    )


def test_total_taxes_agree_with_the_rounded_breakdown():
    base = build_reference_data()
    data = build_reference_data(
        rates=[replace(base.rates[0], cost_amount=Decimal("100.05"))],
        tax_configurations=[_percentage_tax(TaxType.SERVICE_CHARGE, "10"), _percentage_tax(TaxType.GST, "16")],
    )

    result = calculate_quote(_request([leg_payload(check_out_date="2025-03-02")]), data)

    # 10.005 + 16.008 rounds to 26.01 as one sum but 26.02 kind by kind
    assert result.taxes_breakdown.service_charge == Decimal("10.01")
    assert result.taxes_breakdown.gst == Decimal("16.01")
    assert result.taxes_breakdown.total == Decimal("26.02")
    assert result.totals.total_taxes == result.taxes_breakdown.total


class _FlakyReferenceData(InMemoryReferenceData):
    def get_tax_configurations(self, resort_id, on):
        raise RuntimeError("reference store unavailable")


def test_unexpected_adapter_error_becomes_a_failure_result():
    base = build_reference_data()
    data = _FlakyReferenceData(**{f.name: getattr(base, f.name) for f in fields(base)})

    result = calculate_quote(_request(), data)

    assert not result.success
    [blocking] = result.warnings
    assert blocking.code == ErrorCode.CALC_INIT_FAILED.value
    assert blocking.severity is ValidationSeverity.BLOCKING
    assert "reference store unavailable" in blocking.message
    assert result.audit_steps[-1].step_type is AuditStepType.CALCULATION_FAILED

    outcome = try_calculate_quote(_request(), data)
    assert isinstance(outcome, Err)
    assert outcome.error.code is ErrorCode.CALC_INIT_FAILED
