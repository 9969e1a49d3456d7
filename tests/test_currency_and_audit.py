from datetime import datetime, timezone
from decimal import Decimal

import pytest

from resort_quote.models import ExchangeRateSource, ValidationSeverity
from resort_quote.rules.audit import AuditBuilder, AuditStepType
from resort_quote.rules.currency import lock_exchange_rates, money, to_quote_currency
from resort_quote.rules.errors import CalculationError, ErrorCode


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1.005", "1.01"),
        ("2.675", "2.68"),
        ("-1.005", "-1.01"),
        ("10", "10.00"),
        (0.1, "0.10"),
        ("80.004999", "80.00"),
    ],
)
def test_money_rounds_half_up_and_is_idempotent(raw, expected):
    once = money(raw)
    assert once == Decimal(expected)
    assert money(once) == once


def test_lock_without_manual_rates_is_system_default():
    stamp = datetime(2025, 1, 1, tzinfo=timezone.utc)
    locked = lock_exchange_rates("usd", now=stamp)

    assert locked.quote_currency == "USD"
    assert locked.rates == {"USD": Decimal("1")}
    assert locked.source is ExchangeRateSource.SYSTEM_DEFAULT
    assert locked.locked_at == stamp


def test_lock_with_manual_rates_pins_quote_currency():
    locked = lock_exchange_rates("USD", {"eur": Decimal("1.10"), "USD": Decimal("3")})

    assert locked.source is ExchangeRateSource.MANUAL_ENTRY
    assert locked.rates["EUR"] == Decimal("1.10")
    assert locked.rates["USD"] == Decimal("1")


def test_lock_rejects_non_positive_rate():
    with pytest.raises(CalculationError) as excinfo:
        lock_exchange_rates("USD", {"MVR": Decimal("0")})
    assert excinfo.value.code is ErrorCode.CALC_FX_LOCK_FAILED
    assert excinfo.value.resolution_hint == "Manually enter exchange rates."


def test_conversion_uses_locked_rate_and_fails_on_unknown_currency():
    locked = lock_exchange_rates("USD", {"EUR": Decimal("1.10")})

    assert to_quote_currency(Decimal("100"), "EUR", locked) == Decimal("110.00")
    assert to_quote_currency(Decimal("100"), "usd", locked) == Decimal("100")

    with pytest.raises(CalculationError) as excinfo:
        to_quote_currency(Decimal("100"), "GBP", locked)
    assert excinfo.value.code is ErrorCode.CALC_CURRENCY_CONVERSION_FAILED


def test_audit_steps_are_numbered_and_rounded():
    audit = AuditBuilder(leg_index=0)
    audit.add_step(AuditStepType.RATE_LOOKUP, "night 1", result_amount=Decimal("199.995"))
    audit.add_step(AuditStepType.RATE_LOOKUP, "night 2", result_amount=Decimal("200"))

    steps = audit.steps
    assert [s.step_number for s in steps] == [1, 2]
    assert steps[0].result_amount == Decimal("200.00")
    assert all(s.leg_index == 0 for s in steps)


def test_warning_records_item_and_matching_step():
    audit = AuditBuilder(leg_index=1)
    item = audit.warn("TRANSFER_REQUIRED", "transfer missing", resolution_hint="pick one")

    assert item.severity is ValidationSeverity.WARNING
    assert item.leg_index == 1
    assert audit.warnings == (item,)
    assert audit.steps[-1].step_type is AuditStepType.WARNING
    assert audit.steps[-1].outputs == {"warning_code": "TRANSFER_REQUIRED"}


def test_merge_renumbers_child_steps():
    parent = AuditBuilder()
    parent.add_step(AuditStepType.QUOTE_AGGREGATION, "init")

    child = AuditBuilder(leg_index=0)
    child.add_step(AuditStepType.RATE_LOOKUP, "night 1")
    child.warn("DISCOUNT_CODE_NOT_FOUND", "nope")

    parent.merge(child)
    parent.add_step(AuditStepType.QUOTE_AGGREGATION, "totals")

    assert [s.step_number for s in parent.steps] == [1, 2, 3, 4]
    assert [s.step_type for s in parent.steps][1:3] == [AuditStepType.RATE_LOOKUP, AuditStepType.WARNING]
    assert [w.code for w in parent.warnings] == ["DISCOUNT_CODE_NOT_FOUND"]
    # the child builder keeps its own numbering
    assert [s.step_number for s in child.steps] == [1, 2]
