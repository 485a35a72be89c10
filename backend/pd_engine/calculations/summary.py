"""PD summary aggregator (Stage 3): historical averages and the monotonic interpolated curve."""
from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

from pd_engine.models.loan import ClassifiedLoan
from pd_engine.models.matrix import PeriodMigrationMatrix
from pd_engine.models.summary import AveragePDRow, AveragePDTable, PDSummaryResult

logger = logging.getLogger(__name__)


def category_key(name: str) -> str:
    """Normalised category key; the only place category names are compared loosely."""
    return name.strip().casefold()


def historical_pd(observations: Sequence[float]) -> Optional[float]:
    if not observations:
        return None
    return round(sum(observations) / len(observations), 2)


def interpolate_pd(historical: Sequence[Optional[float]]) -> list[Optional[float]]:
    """Correct a best-to-worst PD curve so it never decreases.

    First and last buckets are taken as-is. A middle bucket that dips
    below its predecessor is lifted to the smaller of two candidates, a
    linear bridge to the worst bucket and a repeat of the previous step,
    as long as that candidate does not fall below the predecessor.
    """
    n = len(historical)
    interpolated: list[Optional[float]] = []
    for i, hist in enumerate(historical):
        if hist is None:
            interpolated.append(None)
            continue
        if i == 0 or i == n - 1:
            interpolated.append(hist)
            continue

        prev = interpolated[i - 1] if interpolated[i - 1] is not None else 0.0
        if hist >= prev:
            interpolated.append(round(hist, 2))
            continue

        highest = historical[n - 1] if historical[n - 1] is not None else 0.0
        bridge = prev + (highest - prev) / (n - i)
        delta = 0.0
        if i >= 2 and interpolated[i - 2] is not None:
            delta = prev - interpolated[i - 2]
        repeat = prev + delta

        chosen = min(bridge, repeat)
        if chosen < prev:
            chosen = max(bridge, repeat)
        interpolated.append(round(max(prev, chosen), 2))
    return interpolated


def highest_maturity_by_category(loans: Sequence[ClassifiedLoan]) -> dict[str, int]:
    """Max remaining maturity (years) per normalised category in the latest period."""
    if not loans:
        return {}
    latest = max(loan.period for loan in loans)
    result: dict[str, int] = {}
    for loan in loans:
        if loan.period != latest:
            continue
        key = category_key(loan.product_category)
        result[key] = max(result.get(key, 0), loan.remaining_maturity_years)
    logger.debug("Highest maturity by category for period %s: %s", latest, result)
    return result


def build_pd_summary(
    matrices: Sequence[PeriodMigrationMatrix],
    buckets: Sequence[str],
    loans: Sequence[ClassifiedLoan],
) -> PDSummaryResult:
    start = time.perf_counter()
    combined: dict[str, dict[str, dict[str, list[float]]]] = {}
    periods = set()

    for period_matrix in matrices:
        periods.add(period_matrix.label)
        for category in period_matrix.categories:
            for seg in category.segments:
                if seg.percentages is None:
                    continue
                per_bucket = combined.setdefault(category.product_category, {}).setdefault(
                    seg.segment, {b: [] for b in buckets}
                )
                for bucket in buckets:
                    per_bucket[bucket].append(seg.percentages.grand_total[bucket])

    maturities = highest_maturity_by_category(loans)
    tables: dict[str, dict[str, AveragePDTable]] = {}
    for category, segments in combined.items():
        highest = maturities.get(category_key(category))
        if highest is None:
            logger.warning("No loans for category %r in the latest period, highest maturity unknown", category)
        for segment, per_bucket in segments.items():
            hist = [historical_pd(per_bucket[b]) for b in buckets]
            interp = interpolate_pd(hist)
            tables.setdefault(category, {})[segment] = AveragePDTable(
                product_category=category,
                segment=segment,
                rows=[
                    AveragePDRow(bucket=b, historical_pd=h, interpolated_pd=p)
                    for b, h, p in zip(buckets, hist, interp)
                ],
                highest_maturity=highest,
            )

    logger.info("Built %d average PD tables from %d period pairs in %.2fs",
                sum(len(s) for s in tables.values()), len(matrices), time.perf_counter() - start)
    return PDSummaryResult(periods=sorted(periods), average_pd_tables=tables, combined_data=combined)
