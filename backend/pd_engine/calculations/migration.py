"""Migration matrix builder (Stage 2).

For every reporting period N and every configured (category, segment),
loans in period N-1 (stepped back by the segment's comparison period) are
joined to period N on (customer, facility) and tabulated into a
bucket-by-bucket transition matrix with exit counts, percentages and a
Grand Total vector.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from typing import Optional, Sequence

from pd_engine.errors import PipelineCancelled, SegmentSkipped
from pd_engine.models.loan import ClassifiedLoan
from pd_engine.models.matrix import (
    NOT_AVAILABLE,
    MatrixCounts,
    MatrixPercentages,
    MigrationRow,
    PeriodMigrationMatrix,
    ProductCategoryMigrationMatrix,
    SegmentMigrationMatrix,
)
from pd_engine.models.result import SegmentNote
from pd_engine.models.setup import Frequency, SegmentConfig
from pd_engine.calculations.periods import comparison_step, previous_period

logger = logging.getLogger(__name__)


def build_migration_rows(
    loans_n_minus_1: Sequence[ClassifiedLoan],
    loans_n: Sequence[ClassifiedLoan],
    worst_bucket: str,
) -> list[MigrationRow]:
    """Join period N-1 loans to period N on (customer, facility).

    Default is absorbing: if either side sits in the worst bucket the
    transition is finalized as the worst bucket, unless the loan has left
    the book by period N, which is always an exit.
    """
    lookup: dict[tuple[str, str], str] = {}
    for loan in loans_n:
        lookup.setdefault((loan.customer_id, loan.facility_id), loan.effective_bucket)

    rows = []
    for loan in loans_n_minus_1:
        from_bucket = loan.effective_bucket
        to_bucket = lookup.get((loan.customer_id, loan.facility_id))
        if to_bucket is None:
            finalized = NOT_AVAILABLE
        elif from_bucket == worst_bucket or to_bucket == worst_bucket:
            finalized = worst_bucket
        else:
            finalized = to_bucket
        rows.append(MigrationRow(
            customer_id=loan.customer_id,
            facility_id=loan.facility_id,
            from_bucket=from_bucket,
            to_bucket=to_bucket,
            finalized_status=finalized,
        ))
    return rows


def tabulate_counts(rows: Sequence[MigrationRow], buckets: Sequence[str]) -> MatrixCounts:
    counts = {f: {t: 0 for t in buckets} for f in buckets}
    exit_counts = {b: 0 for b in buckets}
    row_totals = {b: 0 for b in buckets}

    for row in rows:
        if row.from_bucket not in counts:
            logger.debug("Ignoring migration from unknown bucket %r", row.from_bucket)
            continue
        if row.finalized_status == NOT_AVAILABLE:
            exit_counts[row.from_bucket] += 1
        elif row.finalized_status in counts:
            counts[row.from_bucket][row.finalized_status] += 1
        else:
            logger.debug("Ignoring migration to unknown bucket %r", row.finalized_status)
            continue
        row_totals[row.from_bucket] += 1

    return MatrixCounts(
        buckets=list(buckets), counts=counts, exit_counts=exit_counts, row_totals=row_totals,
    )


def compute_percentages(counts: MatrixCounts) -> MatrixPercentages:
    """Row-normalise counts to 2-decimal percentages and derive the Grand Total."""
    buckets = counts.buckets
    percentages: dict[str, dict[str, Optional[float]]] = {}
    exit_percentages: dict[str, Optional[float]] = {}

    for i, from_bucket in enumerate(buckets):
        total = counts.row_totals[from_bucket]
        row: dict[str, Optional[float]] = {}
        for j, to_bucket in enumerate(buckets):
            if j <= i or total == 0:
                row[to_bucket] = None
            else:
                row[to_bucket] = round(counts.counts[from_bucket][to_bucket] / total * 100.0, 2)
        percentages[from_bucket] = row
        exit_percentages[from_bucket] = (
            round(counts.exit_counts[from_bucket] / total * 100.0, 2) if total else None
        )

    grand_total = compute_grand_total(buckets, percentages, exit_percentages)
    return MatrixPercentages(
        percentages=percentages, exit_percentages=exit_percentages, grand_total=grand_total,
    )


def compute_grand_total(
    buckets: Sequence[str],
    percentages: dict[str, dict[str, Optional[float]]],
    exit_percentages: dict[str, Optional[float]],
) -> dict[str, float]:
    """Cumulative probability of reaching default from each bucket.

    Single backward pass: the worst bucket is seeded at 100 and each better
    bucket sums its forward transitions weighted by the Grand Total already
    computed for the target, plus its exit percentage.
    """
    n = len(buckets)
    totals = [0.0] * n
    totals[n - 1] = 100.0
    for i in range(n - 2, -1, -1):
        row = percentages[buckets[i]]
        cumulative = 0.0
        for j in range(i + 1, n):
            pct = row[buckets[j]]
            if pct is not None:
                cumulative += pct / 100.0 * totals[j]
        exit_pct = exit_percentages[buckets[i]]
        if exit_pct is not None:
            cumulative += exit_pct / 100.0 * 100.0
        # Rounded row percentages can sum past 100; no bucket exceeds the worst.
        totals[i] = min(round(cumulative, 2), 100.0)
    return {b: totals[k] for k, b in enumerate(buckets)}


def _period_n_minus_1(
    period_n: str, periods: Sequence[str], frequency: Frequency, segment: SegmentConfig
) -> str:
    step = comparison_step(frequency, segment.comparison_period)
    if step is None:
        raise SegmentSkipped(
            "PDCalculation.IncompatibleComparisonPeriod",
            f"Comparison period {segment.comparison_period!r} is not supported "
            f"for {frequency.value} reporting",
        )
    previous = previous_period(period_n, periods, step)
    if previous is None:
        raise SegmentSkipped(
            "PDCalculation.InsufficientHistory",
            f"Period {period_n} has fewer than {step} earlier period(s)",
        )
    return previous


def build_migration_matrices(
    loans: Sequence[ClassifiedLoan],
    buckets: Sequence[str],
    worst_bucket: str,
    frequency: Frequency,
    segments: Sequence[SegmentConfig],
    cancel: Optional[threading.Event] = None,
) -> tuple[list[PeriodMigrationMatrix], list[SegmentNote]]:
    """Build every period-pair matrix.

    Returns the matrices grouped by actual (N-1, N) pair, in period order,
    and notes for every segment/period that was skipped.
    """
    start = time.perf_counter()
    by_key: dict[tuple[str, str, str], list[ClassifiedLoan]] = defaultdict(list)
    for loan in loans:
        by_key[(loan.period, loan.product_category, loan.segment)].append(loan)
    periods = sorted({loan.period for loan in loans})

    notes: list[SegmentNote] = []
    incompatible = set()
    pairs: dict[tuple[str, str], dict[str, list[SegmentMigrationMatrix]]] = {}

    if len(periods) < 2:
        logger.warning("Not enough periods for migration matrices, found %d", len(periods))

    for period_n in periods[1:]:
        if cancel is not None and cancel.is_set():
            raise PipelineCancelled()
        for seg in segments:
            try:
                period_prev = _period_n_minus_1(period_n, periods, frequency, seg)
            except SegmentSkipped as e:
                seg_key = (seg.product_category, seg.segment)
                if e.code == "PDCalculation.IncompatibleComparisonPeriod":
                    if seg_key in incompatible:
                        continue
                    incompatible.add(seg_key)
                logger.warning("Skipping %s/%s for period %s: %s",
                               seg.product_category, seg.segment, period_n, e.message)
                notes.append(SegmentNote(
                    product_category=seg.product_category, segment=seg.segment,
                    period=period_n, code=e.code, message=e.message,
                ))
                continue

            rows = build_migration_rows(
                by_key.get((period_prev, seg.product_category, seg.segment), []),
                by_key.get((period_n, seg.product_category, seg.segment), []),
                worst_bucket,
            )
            if not rows:
                logger.debug("No migration rows for %s/%s %s -> %s",
                             seg.product_category, seg.segment, period_prev, period_n)
                continue

            counts = tabulate_counts(rows, buckets)
            matrix = SegmentMigrationMatrix(
                product_category=seg.product_category,
                segment=seg.segment,
                period_n_minus_1=period_prev,
                period_n=period_n,
                counts=counts,
                percentages=compute_percentages(counts),
            )
            categories = pairs.setdefault((period_prev, period_n), {})
            categories.setdefault(seg.product_category, []).append(matrix)
            logger.debug("Built matrix for %s/%s %s -> %s from %d rows",
                         seg.product_category, seg.segment, period_prev, period_n, len(rows))

    result = [
        PeriodMigrationMatrix(
            period_n_minus_1=prev,
            period_n=curr,
            categories=[
                ProductCategoryMigrationMatrix(product_category=cat, segments=segs)
                for cat, segs in categories.items()
            ],
        )
        for (prev, curr), categories in sorted(pairs.items(), key=lambda kv: (kv[0][1], kv[0][0]))
    ]
    logger.info("Built %d period migration matrices in %.2fs", len(result), time.perf_counter() - start)
    return result, notes
