"""PD extrapolation engine (Stage 4).

Extends each segment's interpolated PD curve to a multi-year table under
three methods:

1. Geometric: cumulative PD_t = 1 - (1 - PD_1)^t
2. Geometric + lognormal: as method 1 up to year 5, then a log-scaled
   exponent for the long tail
3. Survival rate: EFA-scaled year-1 PD, survival rates and marginal PDs

The two best buckets are not extrapolated (year 1 only) and the worst
bucket is pinned at 100% in every year. All values are percentages.
"""
from __future__ import annotations

import logging
import math
import time
from typing import Callable, Optional, Sequence

from pd_engine.errors import ConfigurationError
from pd_engine.models.extrapolation import (
    GeometricMethodResult,
    PdExtrapolationResult,
    PdExtrapolationRow,
    PdExtrapolationTable,
    SegmentExtrapolation,
    SurvivalMethodResult,
)
from pd_engine.models.setup import MacroEconomicFactorSchedule
from pd_engine.models.summary import AveragePDTable, PDSummaryResult

logger = logging.getLogger(__name__)

LOGNORMAL_THRESHOLD_YEAR = 5

_Row = dict[int, Optional[float]]


def validate_efa_schedule(schedule: MacroEconomicFactorSchedule) -> None:
    years = sorted(v.year for v in schedule.values)
    if not years:
        raise ConfigurationError("PDCalculation.MissingEfaSchedule", "EFA schedule is empty")
    if years != list(range(1, len(years) + 1)):
        raise ConfigurationError(
            "PDCalculation.InvalidEfaSchedule",
            f"EFA years must be contiguous from 1, got {years}",
        )


def forecast_years(highest_maturity: Optional[int]) -> list[int]:
    return list(range(1, max(1, highest_maturity or 1) + 1))


def _table(buckets: Sequence[str], years: list[int], rows: list[_Row]) -> PdExtrapolationTable:
    return PdExtrapolationTable(
        years=years,
        rows=[PdExtrapolationRow(bucket=b, pd_values_by_year=r) for b, r in zip(buckets, rows)],
    )


def _probability(pd1: float) -> float:
    # Grand Total rounding can push a PD a hair past 100
    return min(max(pd1, 0.0), 100.0) / 100.0


def _geometric(pd1: float, year: int) -> float:
    return (1 - math.pow(1 - _probability(pd1), year)) * 100.0


def _geometric_lognormal(pd1: float, year: int) -> float:
    if year <= LOGNORMAL_THRESHOLD_YEAR:
        return _geometric(pd1, year)
    log_scale = math.log(year) / math.log(LOGNORMAL_THRESHOLD_YEAR)
    base = math.pow(_probability(pd1), 1.0 / LOGNORMAL_THRESHOLD_YEAR)
    prob = 1 - math.pow(1 - base, year * log_scale)
    return min(prob * 100.0, 100.0)


def _cumulative_before_efa(
    interpolated: Sequence[Optional[float]],
    years: list[int],
    formula: Callable[[float, int], float],
) -> list[_Row]:
    n = len(interpolated)
    rows = []
    for i, pd1 in enumerate(interpolated):
        if i == n - 1:
            rows.append({y: 100.0 for y in years})
        elif i < 2:
            rows.append({y: (pd1 if y == 1 else None) for y in years})
        elif pd1 is None:
            rows.append({y: None for y in years})
        else:
            rows.append({y: (pd1 if y == 1 else formula(pd1, y)) for y in years})
    return rows


def _after_efa(before: list[_Row], schedule: MacroEconomicFactorSchedule) -> list[_Row]:
    n = len(before)
    rows = []
    for i, row in enumerate(before):
        if i == n - 1:
            rows.append(dict(row))
            continue
        rows.append({
            y: (None if v is None else min(v * schedule.efa_for_year(y) / 100.0, 100.0))
            for y, v in row.items()
        })
    return rows


def _marginal(cumulative: list[_Row], years: list[int], cap: Optional[float] = None) -> list[_Row]:
    rows = []
    for row in cumulative:
        marginal: _Row = {}
        for y in years:
            current = row.get(y)
            if y == 1:
                marginal[y] = current
                continue
            previous = row.get(y - 1)
            if current is None or previous is None:
                marginal[y] = None
                continue
            value = max(current - previous, 0.0)
            marginal[y] = value if cap is None else min(value, cap)
        rows.append(marginal)
    return rows


def extrapolate_method1(
    table: AveragePDTable, schedule: MacroEconomicFactorSchedule
) -> GeometricMethodResult:
    buckets = [r.bucket for r in table.rows]
    years = forecast_years(table.highest_maturity)
    before = _cumulative_before_efa([r.interpolated_pd for r in table.rows], years, _geometric)
    after = _after_efa(before, schedule)
    return GeometricMethodResult(
        before_efa=_table(buckets, years, before),
        after_efa=_table(buckets, years, after),
        marginal=_table(buckets, years, _marginal(after, years)),
    )


def extrapolate_method2(
    table: AveragePDTable, schedule: MacroEconomicFactorSchedule
) -> GeometricMethodResult:
    buckets = [r.bucket for r in table.rows]
    years = forecast_years(table.highest_maturity)
    before = _cumulative_before_efa(
        [r.interpolated_pd for r in table.rows], years, _geometric_lognormal
    )
    after = _after_efa(before, schedule)
    return GeometricMethodResult(
        before_efa=_table(buckets, years, before),
        after_efa=_table(buckets, years, after),
        marginal=_table(buckets, years, _marginal(after, years, cap=100.0)),
    )


def extrapolate_method3(
    table: AveragePDTable, schedule: MacroEconomicFactorSchedule
) -> SurvivalMethodResult:
    """Survival-rate approach.

    Raises ConfigurationError when the schedule has no year-1 EFA or it is
    zero, since every later year is scaled by it.
    """
    lookup = schedule.as_lookup()
    if 1 not in lookup:
        raise ConfigurationError("PDCalculation.MissingEfaYear1", "EFA schedule has no year 1 value")
    efa1 = lookup[1]
    if efa1 == 0:
        raise ConfigurationError("PDCalculation.ZeroEfaYear1", "EFA year 1 value must not be zero")

    buckets = [r.bucket for r in table.rows]
    years = forecast_years(table.highest_maturity)
    n = len(buckets)

    adjusted: list[_Row] = []
    for i, row in enumerate(table.rows):
        if i == n - 1:
            adjusted.append({y: 100.0 for y in years})
            continue
        pd1 = row.interpolated_pd
        year1 = None if pd1 is None else min(pd1 * efa1 / 100.0, 100.0)
        values: _Row = {}
        for y in years:
            if y == 1:
                values[y] = year1
            elif i < 2 or year1 is None:
                values[y] = None
            else:
                values[y] = min(year1 / efa1 * schedule.efa_for_year(y), 100.0)
        adjusted.append(values)

    survival: list[_Row] = [
        {y: (100.0 if y == 1 else (None if v is None else max(0.0, min(100.0, 100.0 - v))))
         for y, v in row.items()}
        for row in adjusted
    ]

    marginal: list[_Row] = []
    for adj_row, surv_row in zip(adjusted, survival):
        values = {}
        for y in years:
            pd_t = adj_row[y]
            if y == 1 or pd_t is None:
                values[y] = pd_t
                continue
            product = 1.0
            for k in range(1, y):
                rate = surv_row.get(k)
                if rate is None:
                    product = None
                    break
                product *= rate / 100.0
            values[y] = None if product is None else max(0.0, min(100.0, pd_t * product))
        marginal.append(values)

    return SurvivalMethodResult(
        efa_adjusted=_table(buckets, years, adjusted),
        survival_rates=_table(buckets, years, survival),
        marginal=_table(buckets, years, marginal),
    )


def build_extrapolation(
    summary: PDSummaryResult, schedule: MacroEconomicFactorSchedule
) -> PdExtrapolationResult:
    start = time.perf_counter()
    result = PdExtrapolationResult()
    for category, segments in summary.average_pd_tables.items():
        for segment, table in segments.items():
            result.categories.setdefault(category, {})[segment] = SegmentExtrapolation(
                product_category=category,
                segment=segment,
                highest_maturity=max(1, table.highest_maturity or 1),
                method1=extrapolate_method1(table, schedule),
                method2=extrapolate_method2(table, schedule),
                method3=extrapolate_method3(table, schedule),
            )
            logger.debug("Extrapolated %s/%s over %d years",
                         category, segment, max(1, table.highest_maturity or 1))
    logger.info("Extrapolated %d segments in %.2fs",
                sum(len(s) for s in result.categories.values()), time.perf_counter() - start)
    return result
