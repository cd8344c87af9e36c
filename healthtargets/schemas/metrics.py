from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class TargetsRead(CamelModel):
    bmr: int
    tdee: int
    calorie_target: int
    protein_target: float
    water_target: int
    weekly_rate: float
    estimated_weeks: Optional[int] = None
    projected_date: Optional[date] = None


class TodayMetricsRead(TargetsRead):
    bmi: float
    version: int
    computed_at: datetime
    acknowledged: bool
    acknowledged_at: Optional[datetime] = None
    explanations: dict[str, str] = {}


class AcknowledgeRequest(CamelModel):
    # Versions are stored as a 32-bit INTEGER
    version: StrictInt = Field(gt=0, le=2**31 - 1)
    metrics_computed_at: datetime

    @field_validator("metrics_computed_at", mode="before")
    @classmethod
    def _iso_string_only(cls, value):
        # Numbers would be read as epoch seconds; the contract is an ISO-8601 string.
        if not isinstance(value, str) or len(value) > 40:
            raise ValueError("must be an ISO-8601 datetime string")
        return value


class AcknowledgmentRead(CamelModel):
    success: bool = True
    version: int
    metrics_computed_at: datetime
    acknowledged_at: datetime
