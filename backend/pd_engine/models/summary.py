from typing import Optional

from pydantic import BaseModel


class AveragePDRow(BaseModel):
    bucket: str
    historical_pd: Optional[float] = None
    interpolated_pd: Optional[float] = None


class AveragePDTable(BaseModel):
    """Per category/segment PD curve, rows ordered best to worst bucket."""
    product_category: str
    segment: str
    rows: list[AveragePDRow] = []
    highest_maturity: Optional[int] = None

    def interpolated(self) -> dict[str, Optional[float]]:
        return {r.bucket: r.interpolated_pd for r in self.rows}


class PDSummaryResult(BaseModel):
    """Stage 3 output.

    ``average_pd_tables`` and ``combined_data`` are keyed category -> segment
    using the category names exactly as they appear in the migration
    matrices. ``combined_data`` holds every Grand Total observation per
    bucket, in period order.
    """
    periods: list[str] = []
    average_pd_tables: dict[str, dict[str, AveragePDTable]] = {}
    combined_data: dict[str, dict[str, dict[str, list[float]]]] = {}

    def tables(self) -> list[AveragePDTable]:
        return [t for segments in self.average_pd_tables.values() for t in segments.values()]
