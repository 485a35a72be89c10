"""Bucket classifier: maps days-past-due onto the configured delinquency buckets.

Bucket order is the configuration order (validated ascending), so a
bucket's index is its rank: 0 is the best bucket, the last one is the
worst / default state.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

from pd_engine.errors import ConfigurationError, RecordError
from pd_engine.models.setup import BucketDefinition

logger = logging.getLogger(__name__)


def validate_buckets(buckets: Sequence[BucketDefinition]) -> None:
    """Raise ConfigurationError unless buckets are non-empty, unique, contiguous and ascending."""
    if not buckets:
        raise ConfigurationError("PDCalculation.MissingBuckets", "Bucket configuration is empty")

    labels = [b.label for b in buckets]
    if len(set(labels)) != len(labels):
        raise ConfigurationError("PDCalculation.InvalidBuckets", f"Duplicate bucket labels: {labels}")

    for i, bucket in enumerate(buckets):
        if bucket.max_days is not None and bucket.max_days < bucket.min_days:
            raise ConfigurationError(
                "PDCalculation.InvalidBuckets",
                f"Bucket '{bucket.label}' has max_days {bucket.max_days} < min_days {bucket.min_days}",
            )
        if i == len(buckets) - 1:
            break
        nxt = buckets[i + 1]
        if bucket.max_days is None:
            raise ConfigurationError(
                "PDCalculation.InvalidBuckets",
                f"Only the last bucket may be open-ended, got '{bucket.label}'",
            )
        if nxt.min_days != bucket.max_days + 1:
            raise ConfigurationError(
                "PDCalculation.InvalidBuckets",
                f"Buckets '{bucket.label}' and '{nxt.label}' are not contiguous",
            )


def ordered_labels(buckets: Sequence[BucketDefinition]) -> list[str]:
    return [b.label for b in sorted(buckets, key=lambda b: b.min_days)]


def bucket_ranks(buckets: Sequence[BucketDefinition]) -> dict[str, int]:
    return {label: i for i, label in enumerate(ordered_labels(buckets))}


def worst_bucket(buckets: Sequence[BucketDefinition]) -> str:
    """The open-ended bucket if there is one, else the bucket with the highest range end."""
    for b in buckets:
        if b.max_days is None:
            return b.label
    return max(buckets, key=lambda b: b.max_days).label


def classify_days_past_due(days_past_due: int, buckets: Sequence[BucketDefinition]) -> str:
    """Return the label of the bucket containing ``days_past_due``.

    Values beyond every upper bound land in the highest bucket. Anything
    else (a gap below the first bucket) raises RecordError.
    """
    for bucket in buckets:
        if bucket.contains(days_past_due):
            return bucket.label

    bounded = [b for b in buckets if b.max_days is not None]
    if bounded and len(bounded) == len(buckets):
        highest = max(bounded, key=lambda b: b.max_days)
        if days_past_due > highest.max_days:
            return highest.label

    raise RecordError(
        "PDCalculation.UnclassifiableDaysPastDue",
        f"Days past due {days_past_due} does not fall in any configured bucket",
    )


def remaining_maturity_years(period_end: Optional[date], maturity_date: Optional[date]) -> int:
    """Whole years from the reporting date to maturity; 0 once matured or if either date is missing."""
    if period_end is None or maturity_date is None:
        return 0
    days = (maturity_date - period_end).days
    if days <= 0:
        return 0
    return round(days / 365)
