"""
Pydantic schemas for the survey intake API.

Form input is loosely typed: numbers may arrive as strings, blanks mean
"not reported". The validators below turn every metric into an int, float,
str or a true ``None``.
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from survey_backend.db import SurveyFields, SurveyRecord

# Money columns are BIGINT, counts are INTEGER.
BIGINT_FIELDS = (
    "monthly_revenue",
    "food_cost",
    "labor_cost",
    "rent_cost",
    "online_revenue",
    "marketing_cost",
    "utility_cost",
)
INTEGER_FIELDS = (
    "daily_customers",
    "seats",
    "repeat_purchases",
    "total_customers",
    "bad_reviews",
    "total_reviews",
    "social_media_mentions",
)

BIGINT_RANGE = (-(2**63), 2**63 - 1)
INTEGER_RANGE = (-(2**31), 2**31 - 1)
FLOAT_FIELDS = ("average_rating", "service_bad_review_rate", "taste_bad_review_rate")
TEXT_FIELDS = ("store_name", "business_type")


def to_float_or_none(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def to_int_or_none(
    value: Any, bounds: tuple[int, int] = BIGINT_RANGE
) -> Optional[int]:
    """Round to an int; values the column cannot hold count as not reported."""
    number = to_float_or_none(value)
    if number is None:
        return None
    # Half-up rounding: 2.5 -> 3, -2.5 -> -2.
    result = math.floor(number + 0.5)
    low, high = bounds
    if not low <= result <= high:
        return None
    return result


def to_text_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )


class SurveySubmission(_CamelModel):
    store_identifier: Optional[str] = None

    store_name: Optional[str] = None
    business_type: Optional[str] = None
    monthly_revenue: Optional[int] = None
    food_cost: Optional[int] = None
    labor_cost: Optional[int] = None
    rent_cost: Optional[int] = None
    daily_customers: Optional[int] = None
    seats: Optional[int] = None
    online_revenue: Optional[int] = None
    marketing_cost: Optional[int] = None
    repeat_purchases: Optional[int] = None
    total_customers: Optional[int] = None
    utility_cost: Optional[int] = None
    average_rating: Optional[float] = None
    bad_reviews: Optional[int] = None
    total_reviews: Optional[int] = None
    social_media_mentions: Optional[int] = None
    service_bad_review_rate: Optional[float] = None
    taste_bad_review_rate: Optional[float] = None

    @field_validator(*BIGINT_FIELDS, mode="before")
    @classmethod
    def _coerce_bigint(cls, value: Any) -> Optional[int]:
        return to_int_or_none(value, BIGINT_RANGE)

    @field_validator(*INTEGER_FIELDS, mode="before")
    @classmethod
    def _coerce_integer(cls, value: Any) -> Optional[int]:
        return to_int_or_none(value, INTEGER_RANGE)

    @field_validator(*FLOAT_FIELDS, mode="before")
    @classmethod
    def _coerce_float(cls, value: Any) -> Optional[float]:
        return to_float_or_none(value)

    @field_validator("store_identifier", *TEXT_FIELDS, mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Optional[str]:
        return to_text_or_none(value)

    def to_fields(self) -> SurveyFields:
        return SurveyFields(**self.model_dump(exclude={"store_identifier"}))


class SubmitResponse(_CamelModel):
    ok: Literal[True] = True
    id: int
    timestamp: datetime
    update_count: int
    created: bool


class SurveyStatusResponse(_CamelModel):
    store_identifier: str
    exists: bool
    update_count: int
    remaining_updates: int


class SurveyRecordResponse(SurveySubmission):
    """Pre-fill view of a stored survey. Request metadata is not echoed back."""

    id: int
    store_identifier: str
    update_count: int
    timestamp: datetime

    @classmethod
    def from_record(cls, record: SurveyRecord) -> "SurveyRecordResponse":
        return cls(
            id=record.id,
            store_identifier=record.store_identifier,
            update_count=record.update_count,
            timestamp=record.timestamp,
            **record.fields.as_dict(),
        )


class ListSurveysResponse(BaseModel):
    rows: list[dict]
    limit: int
    offset: int
    total: int
    count: int


class HealthResponse(BaseModel):
    ok: bool
    time: str
    database: Literal["connected", "disconnected"]
    db_time: Optional[str] = None
    error: Optional[str] = None
