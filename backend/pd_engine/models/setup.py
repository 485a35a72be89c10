"""Run-level configuration models for a PD calculation run."""
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class Frequency(str, Enum):
    """Reporting frequency of the snapshot extracts."""
    yearly = "yearly"
    quarterly = "quarterly"
    monthly = "monthly"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            lowered = value.strip().lower()
            for member in cls:
                if member.value == lowered:
                    return member
        return None


class FinalBucketType(str, Enum):
    worst = "worst"
    percentage = "percentage"


class BucketDefinition(BaseModel):
    """Days-past-due range; ``max_days=None`` marks the open-ended worst bucket."""
    label: str
    min_days: int
    max_days: Optional[int] = None

    def contains(self, days_past_due: int) -> bool:
        if days_past_due < self.min_days:
            return False
        return self.max_days is None or days_past_due <= self.max_days


class FinalBucketPolicy(BaseModel):
    """Customer-level aggregation rule for final buckets.

    ``type`` is kept as free text so an unknown policy can be carried
    through and resolved with the identity fallback.
    """
    type: str = ""
    percentage: Optional[float] = None

    @property
    def kind(self) -> Optional[FinalBucketType]:
        try:
            return FinalBucketType(self.type.strip().lower())
        except ValueError:
            return None

    def is_valid(self) -> bool:
        if self.kind == FinalBucketType.worst:
            return True
        if self.kind == FinalBucketType.percentage:
            return self.percentage is not None and 0 < self.percentage <= 100
        return False


class SegmentConfig(BaseModel):
    product_category: str
    segment: str
    comparison_period: str
    pd_estimation_approach: str = ""


class EfaYearValue(BaseModel):
    year: int = Field(ge=1)
    efa_percentage: float


class MacroEconomicFactorSchedule(BaseModel):
    """Year -> EFA percentage. Years past the last entry reuse its value."""
    values: list[EfaYearValue] = []

    def as_lookup(self) -> dict[int, float]:
        return {v.year: v.efa_percentage for v in self.values}

    @property
    def last_year(self) -> Optional[int]:
        return max((v.year for v in self.values), default=None)

    def efa_for_year(self, year: int) -> float:
        lookup = self.as_lookup()
        if year in lookup:
            return lookup[year]
        return lookup[self.last_year]


class PipelineConfig(BaseModel):
    """Everything a caller supplies for one run."""
    frequency: str
    buckets: list[BucketDefinition] = []
    final_bucket_policy: FinalBucketPolicy = FinalBucketPolicy()
    segments: list[SegmentConfig] = []
    efa_schedule: MacroEconomicFactorSchedule = MacroEconomicFactorSchedule()
    period_end_dates: dict[str, date] = {}
