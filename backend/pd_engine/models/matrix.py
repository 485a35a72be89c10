"""Migration matrix result models (Stage 2).

All matrices are keyed by bucket label; ``buckets`` fixes the order, best
to worst, and every nested dict holds every configured label.
"""
from typing import Optional

from pydantic import BaseModel

NOT_AVAILABLE = "N/A"


class MigrationRow(BaseModel):
    """One (customer, facility) pair joined across two periods."""
    customer_id: str
    facility_id: str
    from_bucket: str
    to_bucket: Optional[str] = None
    finalized_status: str


class MatrixCounts(BaseModel):
    buckets: list[str]
    counts: dict[str, dict[str, int]]
    exit_counts: dict[str, int]
    row_totals: dict[str, int]


class MatrixPercentages(BaseModel):
    """Row-normalised percentages; cells with ``to <= from`` are ``None``."""
    percentages: dict[str, dict[str, Optional[float]]]
    exit_percentages: dict[str, Optional[float]]
    grand_total: dict[str, float]


class SegmentMigrationMatrix(BaseModel):
    product_category: str
    segment: str
    period_n_minus_1: str
    period_n: str
    counts: MatrixCounts
    percentages: Optional[MatrixPercentages] = None


class ProductCategoryMigrationMatrix(BaseModel):
    product_category: str
    segments: list[SegmentMigrationMatrix] = []


class PeriodMigrationMatrix(BaseModel):
    period_n_minus_1: str
    period_n: str
    categories: list[ProductCategoryMigrationMatrix] = []

    @property
    def label(self) -> str:
        return f"{self.period_n_minus_1}vs{self.period_n}"
