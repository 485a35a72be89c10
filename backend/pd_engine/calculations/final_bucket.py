"""Final-bucket resolution: one customer-level bucket per loan and period.

Resolution is a pure function returning ``record_id -> bucket``; the
lookup is applied with ``apply_final_buckets`` which builds new loan
instances instead of mutating the classified ones.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from typing import Sequence

from pd_engine.models.loan import ClassifiedLoan
from pd_engine.models.setup import BucketDefinition, FinalBucketPolicy, FinalBucketType
from pd_engine.calculations.bucket_classifier import bucket_ranks

logger = logging.getLogger(__name__)


def resolve_final_buckets(
    loans: Sequence[ClassifiedLoan],
    policy: FinalBucketPolicy,
    buckets: Sequence[BucketDefinition],
) -> dict[str, str]:
    """Return ``record_id -> final bucket`` for every loan."""
    if not policy.is_valid():
        logger.warning(
            "Final bucket policy %r (percentage=%s) is not valid, keeping each loan's own bucket",
            policy.type, policy.percentage,
        )
        return {loan.record_id: loan.bucket_label for loan in loans}

    ranks = bucket_ranks(buckets)
    groups: dict[tuple[str, str], list[ClassifiedLoan]] = defaultdict(list)
    for loan in loans:
        groups[(loan.customer_id, loan.period)].append(loan)

    resolved: dict[str, str] = {}
    for group in groups.values():
        # Stable sort keeps input order among loans sharing a bucket.
        ordered = sorted(group, key=lambda l: ranks.get(l.bucket_label, -1), reverse=True)
        if policy.kind == FinalBucketType.worst:
            resolved.update(_resolve_worst(ordered))
        else:
            resolved.update(_resolve_percentage(ordered, policy.percentage))

    logger.debug("Resolved final buckets for %d customer/period groups", len(groups))
    return resolved


def _resolve_worst(ordered: list[ClassifiedLoan]) -> dict[str, str]:
    top = ordered[0].bucket_label
    return {loan.record_id: top for loan in ordered}


def _decimal(value: float) -> Decimal:
    return Decimal(str(value))


def _resolve_percentage(ordered: list[ClassifiedLoan], threshold: float) -> dict[str, str]:
    # Shares are compared in Decimal: a loan landing exactly on the threshold keeps its bucket.
    balances = [_decimal(loan.outstanding_balance) for loan in ordered]
    total = sum(balances, Decimal(0))
    if total == 0:
        return {loan.record_id: loan.bucket_label for loan in ordered}

    limit = _decimal(threshold) * total
    result: dict[str, str] = {}
    cumulative = Decimal(0)
    pivot = None
    for loan, balance in zip(ordered, balances):
        if pivot is not None:
            result[loan.record_id] = pivot
            continue
        cumulative += balance
        if cumulative * 100 > limit:
            pivot = loan.bucket_label
        result[loan.record_id] = loan.bucket_label
    return result


def apply_final_buckets(
    loans: Sequence[ClassifiedLoan], final_buckets: dict[str, str]
) -> list[ClassifiedLoan]:
    """Copy each loan with its resolved final bucket (own bucket when unresolved)."""
    return [
        loan.model_copy(update={"final_bucket": final_buckets.get(loan.record_id, loan.bucket_label)})
        for loan in loans
    ]
