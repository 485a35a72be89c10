from typing import Optional

from pydantic import BaseModel


class PdExtrapolationRow(BaseModel):
    bucket: str
    pd_values_by_year: dict[int, Optional[float]] = {}


class PdExtrapolationTable(BaseModel):
    years: list[int] = []
    rows: list[PdExtrapolationRow] = []

    def row(self, bucket: str) -> Optional[PdExtrapolationRow]:
        for r in self.rows:
            if r.bucket == bucket:
                return r
        return None

    def value(self, bucket: str, year: int) -> Optional[float]:
        r = self.row(bucket)
        return None if r is None else r.pd_values_by_year.get(year)


class GeometricMethodResult(BaseModel):
    """Method 1 and Method 2 share this shape."""
    before_efa: PdExtrapolationTable
    after_efa: PdExtrapolationTable
    marginal: PdExtrapolationTable


class SurvivalMethodResult(BaseModel):
    efa_adjusted: PdExtrapolationTable
    survival_rates: PdExtrapolationTable
    marginal: PdExtrapolationTable


class SegmentExtrapolation(BaseModel):
    product_category: str
    segment: str
    highest_maturity: int
    method1: GeometricMethodResult
    method2: GeometricMethodResult
    method3: SurvivalMethodResult


class PdExtrapolationResult(BaseModel):
    """Keyed category -> segment, same keys as the PD summary tables."""
    categories: dict[str, dict[str, SegmentExtrapolation]] = {}

    def get(self, category: str, segment: str) -> Optional[SegmentExtrapolation]:
        return self.categories.get(category, {}).get(segment)
