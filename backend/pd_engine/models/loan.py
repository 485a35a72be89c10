from datetime import date
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _new_record_id() -> str:
    return uuid4().hex


class LoanRecord(BaseModel):
    """One already-column-mapped snapshot row."""
    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=_new_record_id)
    customer_id: str
    facility_id: str
    product_category: str
    segment: str
    period: str
    days_past_due: int = Field(ge=0)
    outstanding_balance: float = 0.0
    maturity_date: Optional[date] = None

    @field_validator("customer_id", "facility_id", "product_category", "segment", "period", mode="before")
    @classmethod
    def _strip_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            value = value.strip()
            if not value:
                raise ValueError("must not be blank")
        return value


class ClassifiedLoan(BaseModel):
    """A loan after Stage 1: bucketed, with its remaining maturity.

    ``final_bucket`` stays ``None`` until final buckets are resolved and
    applied; instances are never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True)

    record_id: str
    customer_id: str
    facility_id: str
    product_category: str
    segment: str
    period: str
    days_past_due: int
    outstanding_balance: float
    maturity_date: Optional[date] = None
    remaining_maturity_years: int = 0
    bucket_label: str
    final_bucket: Optional[str] = None

    @property
    def effective_bucket(self) -> str:
        return self.final_bucket or self.bucket_label


class RecordIssue(BaseModel):
    """Warning recorded for a row skipped during ingestion."""
    row_index: Optional[int] = None
    customer_id: Optional[str] = None
    facility_id: Optional[str] = None
    period: Optional[str] = None
    message: str
