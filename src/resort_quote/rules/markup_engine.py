"""Markup exclusions, resort/quote-level markup and transfer markup."""
from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..models import LineItemType, MarkupConfiguration, MarkupType
from .audit import AuditBuilder, AuditStepType
from .context import CalculationContext
from .currency import HUNDRED, ZERO, PricingBreakdown, money, percent_of
from .errors import CalculationError, ErrorCode
from .tax_engine import TaxResult

logger = logging.getLogger(__name__)

PASS_THROUGH_REASON = "Pass-through tax is never marked up"
CONFIG_EXCLUSION_REASON = "Excluded by markup configuration"
QUOTE_LEVEL_REASON = "Quote-level fixed markup in use"


class MarkupSource(str, Enum):
    RESORT = "RESORT"
    QUOTE_LEVEL = "QUOTE_LEVEL"


@dataclass(frozen=True)
class LineItemMarkup:
    line_item_type: LineItemType
    cost_amount: Decimal
    markup_amount: Decimal
    sell_amount: Decimal
    excluded: bool = False
    exclusion_reason: Optional[str] = None

    def rounded(self) -> "LineItemMarkup":
        pricing = PricingBreakdown.of(self.cost_amount, self.markup_amount)
        return replace(
            self,
            cost_amount=pricing.cost_amount,
            markup_amount=pricing.markup_amount,
            sell_amount=pricing.sell_amount,
        )


@dataclass(frozen=True)
class MarkupResult:
    source: MarkupSource
    markup_config_id: Optional[str]
    markup_type: MarkupType
    markup_value: Decimal
    markup_basis: Decimal
    cost_amount: Decimal
    markup_amount: Decimal
    sell_amount: Decimal
    excluded_components: Tuple[LineItemType, ...] = ()
    line_items: Tuple[LineItemMarkup, ...] = ()

    def rounded(self) -> "MarkupResult":
        cost = money(self.cost_amount)
        markup = money(self.markup_amount)
        return replace(
            self,
            markup_basis=money(self.markup_basis),
            cost_amount=cost,
            markup_amount=markup,
            sell_amount=cost + markup,
            line_items=tuple(item.rounded() for item in self.line_items),
        )


def exclusion_reason(config: MarkupConfiguration, category: LineItemType) -> Optional[str]:
    """Why ``category`` stays out of the markup basis, or None when it is marked up."""
    if category is LineItemType.GREEN_TAX:
        return PASS_THROUGH_REASON
    if category in config.excluded_components:
        return CONFIG_EXCLUSION_REASON
    if category.is_tax and not config.applies_to_taxes:
        return CONFIG_EXCLUSION_REASON
    return None


def should_exclude(config: MarkupConfiguration, category: LineItemType) -> bool:
    """True when ``category`` must stay out of the markup basis."""
    return exclusion_reason(config, category) is not None


def category_costs(
    post_discount_costs: Mapping[LineItemType, Decimal], taxes: Sequence[TaxResult]
) -> Dict[LineItemType, Decimal]:
    costs: Dict[LineItemType, Decimal] = dict(post_discount_costs)
    for tax in taxes:
        costs[tax.tax_type] = costs.get(tax.tax_type, ZERO) + tax.cost_amount
    return costs


def markup_basis(
    config: MarkupConfiguration,
    post_discount_costs: Mapping[LineItemType, Decimal],
    taxes: Sequence[TaxResult],
) -> Tuple[Decimal, Tuple[LineItemType, ...]]:
    basis = ZERO
    excluded: List[LineItemType] = []
    for category, amount in category_costs(post_discount_costs, taxes).items():
        if should_exclude(config, category):
            excluded.append(category)
        else:
            basis += amount
    return basis, tuple(excluded)


def line_item_markups(
    costs: Mapping[LineItemType, Decimal],
    config: Optional[MarkupConfiguration],
    markup_amount: Decimal,
    basis: Decimal,
) -> Tuple[LineItemMarkup, ...]:
    """
    Split a leg's markup over its cost categories.

    Percentage markup is applied to each included category directly. A fixed
    amount is spread over the included categories pro rata to cost. Without a
    config (quote-level markup) every category reports zero markup.
    """
    rows: List[LineItemMarkup] = []
    for category, cost in costs.items():
        if cost == ZERO:
            continue
        reason = QUOTE_LEVEL_REASON if config is None else exclusion_reason(config, category)
        if reason is not None:
            rows.append(LineItemMarkup(category, cost, ZERO, cost, True, reason))
            continue
        if config.markup_type == MarkupType.PERCENTAGE:
            share = percent_of(cost, config.markup_value)
        elif basis == ZERO:
            share = ZERO
        else:
            share = markup_amount * cost / basis
        rows.append(LineItemMarkup(category, cost, share, cost + share))
    return tuple(rows)


def _require_config(config: Optional[MarkupConfiguration], resort_id: str) -> MarkupConfiguration:
    if config is None:
        raise CalculationError(
            ErrorCode.CALC_MARKUP_INVALID,
            f"No markup configuration for resort {resort_id}",
            {"resort_id": resort_id},
        )
    if config.markup_value < ZERO:
        raise CalculationError(
            ErrorCode.CALC_MARKUP_INVALID,
            f"Markup configuration {config.id} has negative value {config.markup_value}",
            {"markup_config_id": config.id},
        )
    return config


def calculate_leg_markup(
    ctx: CalculationContext,
    resort_id: str,
    config: Optional[MarkupConfiguration],
    cost: Decimal,
    post_discount_costs: Mapping[LineItemType, Decimal],
    taxes: Sequence[TaxResult],
    audit: AuditBuilder,
    *,
    quote_level: bool = False,
) -> MarkupResult:
    if quote_level:
        audit.add_step(
            AuditStepType.MARKUP,
            "Resort markup deferred to quote-level fixed markup",
            inputs={"resort_id": resort_id, "cost_amount": str(money(cost))},
            outputs={"markup_amount": "0.00"},
        )
        return MarkupResult(
            source=MarkupSource.QUOTE_LEVEL,
            markup_config_id=None,
            markup_type=MarkupType.FIXED,
            markup_value=ZERO,
            markup_basis=ZERO,
            cost_amount=cost,
            markup_amount=ZERO,
            sell_amount=cost,
            line_items=line_item_markups(category_costs(post_discount_costs, taxes), None, ZERO, ZERO),
        )

    config = _require_config(config, resort_id)
    costs = category_costs(post_discount_costs, taxes)
    basis, excluded = markup_basis(config, post_discount_costs, taxes)

    if config.markup_type == MarkupType.PERCENTAGE:
        amount = percent_of(basis, config.markup_value)
    elif config.markup_type == MarkupType.FIXED:
        amount = ctx.convert(config.markup_value, config.fixed_markup_currency or ctx.quote_currency)
    else:
        raise CalculationError(
            ErrorCode.CALC_MARKUP_INVALID,
            f"Markup configuration {config.id} has unknown type {config.markup_type!r}",
            {"markup_config_id": config.id},
        )
    line_items = line_item_markups(costs, config, amount, basis)

    audit.add_step(
        AuditStepType.MARKUP,
        f"Resort markup {MarkupType(config.markup_type).value} {config.markup_value}",
        inputs={
            "markup_config_id": config.id,
            "markup_basis": str(money(basis)),
            "excluded_components": [c.value for c in excluded],
            "cost_amount": str(money(cost)),
        },
        outputs={
            "markup_amount": str(money(amount)),
            "sell_amount": str(money(cost + amount)),
            "by_category": {i.line_item_type.value: str(money(i.markup_amount)) for i in line_items},
        },
        result_amount=amount,
    )
    return MarkupResult(
        source=MarkupSource.RESORT,
        markup_config_id=config.id,
        markup_type=MarkupType(config.markup_type),
        markup_value=config.markup_value,
        markup_basis=basis,
        cost_amount=cost,
        markup_amount=amount,
        sell_amount=cost + amount,
        excluded_components=excluded,
        line_items=line_items,
    )


def transfer_markup(config: Optional[MarkupConfiguration], resort_id: str, cost: Decimal) -> Decimal:
    """Markup on an inter-resort transfer, priced by the destination resort."""
    config = _require_config(config, resort_id)
    if config.markup_type == MarkupType.FIXED:
        # Fixed-type destination configs contribute nothing on transfers.
        return ZERO
    return percent_of(cost, config.markup_value)


def margin_percentage(markup: Decimal, sell: Decimal) -> Decimal:
    if sell == ZERO:
        return ZERO
    return markup / sell * HUNDRED


def markup_percentage(cost: Decimal, sell: Decimal) -> Decimal:
    if cost == ZERO:
        return ZERO
    return (sell - cost) / cost * HUNDRED
