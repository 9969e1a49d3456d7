"""
Audit trail accumulation.

Each pipeline stage receives the AuditBuilder owned by its caller. A leg
calculation gets a fresh builder that the quote calculator merges into its
own once the leg is done, so numbering stays monotonic across the quote.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..models import ValidationSeverity
from .currency import ZERO, money

logger = logging.getLogger(__name__)


class AuditStepType(str, Enum):
    RATE_LOOKUP = "RATE_LOOKUP"
    EXTRA_PERSON = "EXTRA_PERSON"
    MEAL_PLAN = "MEAL_PLAN"
    TRANSFER = "TRANSFER"
    ACTIVITY = "ACTIVITY"
    FESTIVE_SUPPLEMENT = "FESTIVE_SUPPLEMENT"
    PRE_TAX_SUBTOTAL = "PRE_TAX_SUBTOTAL"
    DISCOUNT = "DISCOUNT"
    DISCOUNT_REMOVED = "DISCOUNT_REMOVED"
    DISCOUNT_STACKING_RESOLVED = "DISCOUNT_STACKING_RESOLVED"
    TAX_CALCULATION = "TAX_CALCULATION"
    MARKUP = "MARKUP"
    LEG_TOTAL = "LEG_TOTAL"
    INTER_RESORT_TRANSFER = "INTER_RESORT_TRANSFER"
    QUOTE_LEVEL_MARKUP = "QUOTE_LEVEL_MARKUP"
    QUOTE_AGGREGATION = "QUOTE_AGGREGATION"
    WARNING = "WARNING"
    CALCULATION_FAILED = "CALCULATION_FAILED"


@dataclass(frozen=True)
class AuditStep:
    step_number: int
    step_type: AuditStepType
    description: str
    inputs: Dict[str, Any]
    outputs: Dict[str, Any]
    result_amount: Decimal
    timestamp: datetime
    leg_index: Optional[int] = None


@dataclass(frozen=True)
class ValidationItem:
    code: str
    message: str
    severity: ValidationSeverity = ValidationSeverity.WARNING
    leg_index: Optional[int] = None
    resolution_hint: Optional[str] = None


@dataclass
class AuditBuilder:
    leg_index: Optional[int] = None
    _steps: List[AuditStep] = field(default_factory=list)
    _warnings: List[ValidationItem] = field(default_factory=list)
    _counter: int = 0

    def add_step(
        self,
        step_type: AuditStepType,
        description: str,
        inputs: Optional[Dict[str, Any]] = None,
        outputs: Optional[Dict[str, Any]] = None,
        result_amount: Decimal = ZERO,
    ) -> AuditStep:
        self._counter += 1
        step = AuditStep(
            step_number=self._counter,
            step_type=step_type,
            description=description,
            inputs=dict(inputs or {}),
            outputs=dict(outputs or {}),
            result_amount=money(result_amount),
            timestamp=datetime.now(timezone.utc),
            leg_index=self.leg_index,
        )
        self._steps.append(step)
        return step

    def warn(
        self,
        code: str,
        message: str,
        *,
        step_type: AuditStepType = AuditStepType.WARNING,
        inputs: Optional[Dict[str, Any]] = None,
        resolution_hint: Optional[str] = None,
        severity: ValidationSeverity = ValidationSeverity.WARNING,
    ) -> ValidationItem:
        """Record a warning together with the audit step that explains it."""
        item = ValidationItem(
            code=code,
            message=message,
            severity=severity,
            leg_index=self.leg_index,
            resolution_hint=resolution_hint,
        )
        logger.info("leg %s warning %s: %s", self.leg_index, code, message)
        self._warnings.append(item)
        self.add_step(step_type, message, inputs=inputs, outputs={"warning_code": code})
        return item

    def merge(self, other: "AuditBuilder") -> None:
        for step in other._steps:
            self._counter += 1
            self._steps.append(replace(step, step_number=self._counter))
        self._warnings.extend(other._warnings)

    @property
    def steps(self) -> Tuple[AuditStep, ...]:
        return tuple(self._steps)

    @property
    def warnings(self) -> Tuple[ValidationItem, ...]:
        return tuple(self._warnings)
