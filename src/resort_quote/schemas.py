# src/resort_quote/schemas.py
"""
Input contract for a quote calculation.

Request shapes are validated here, before anything reaches the engine; the
engine itself assumes well-formed input and reports only pricing failures.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class ChildIn(BaseModel):
    age: int = Field(..., ge=0, le=17, examples=[6])


class LegRequest(BaseModel):
    resort_id: str = Field(..., examples=["resort-azure"])
    room_type_id: str = Field(..., examples=["room-beach-villa"])
    check_in_date: date = Field(..., examples=["2025-12-20"])
    check_out_date: date = Field(..., examples=["2025-12-27"])
    adults_count: int = Field(..., ge=1, examples=[2])
    children: List[ChildIn] = Field(default_factory=list)
    meal_plan_id: Optional[str] = None
    transfer_type_id: Optional[str] = None
    activity_ids: List[str] = Field(default_factory=list)
    discount_codes: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_dates(self) -> "LegRequest":
        if self.check_out_date <= self.check_in_date:
            raise ValueError("check_out_date must be after check_in_date")
        return self

    @property
    def nights(self) -> int:
        return (self.check_out_date - self.check_in_date).days

    @property
    def child_ages(self) -> List[int]:
        return [c.age for c in self.children]


class InterResortTransferIn(BaseModel):
    transfer_description: str = Field(..., examples=["Seaplane transfer"])
    cost_amount: Decimal = Field(..., ge=0, examples=["450.00"])
    currency_code: str = Field(..., min_length=3, max_length=3, examples=["USD"])
    notes: Optional[str] = None


class QuoteLevelMarkupIn(BaseModel):
    markup_value: Decimal = Field(..., examples=["150.00"])
    override_reason: Optional[str] = Field(None, description="Why the resort markups are overridden")


class QuoteRequest(BaseModel):
    client_name: str = Field(..., examples=["A. Traveller"])
    client_email: Optional[str] = None
    client_notes: Optional[str] = None
    currency_code: str = Field(..., min_length=3, max_length=3, examples=["USD"])
    validity_days: int = Field(14, ge=1)
    legs: List[LegRequest] = Field(..., min_length=1)
    inter_resort_transfers: List[InterResortTransferIn] = Field(default_factory=list)
    quote_level_markup: Optional[QuoteLevelMarkupIn] = None
    manual_exchange_rates: Optional[Dict[str, Decimal]] = Field(
        None, description="Units of quote currency per one unit of the keyed currency"
    )
    booking_date: Optional[date] = Field(None, description="Defaults to today")

    @field_validator("currency_code")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.upper()

    @field_validator("manual_exchange_rates")
    @classmethod
    def _upper_rate_keys(cls, v: Optional[Dict[str, Decimal]]) -> Optional[Dict[str, Decimal]]:
        if v is None:
            return None
        return {code.upper(): rate for code, rate in v.items()}
