"""Ingestion and classification (Stage 1).

Turns already-column-mapped snapshot rows into ``LoanRecord`` models,
then classifies each into a delinquency bucket and computes its remaining
maturity. Bad rows are skipped with a ``RecordIssue``; configuration
problems raise ``ConfigurationError``.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

import pandas as pd
from pydantic import ValidationError

from pd_engine.calculations.bucket_classifier import (
    classify_days_past_due,
    remaining_maturity_years,
)
from pd_engine.errors import ConfigurationError, RecordError
from pd_engine.models.loan import ClassifiedLoan, LoanRecord, RecordIssue
from pd_engine.models.setup import PipelineConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Row adapters
# ---------------------------------------------------------------------------
def _issue_for(index: int, row: Mapping[str, Any], message: str) -> RecordIssue:
    def _text(key):
        value = row.get(key)
        return None if value is None else str(value)

    return RecordIssue(
        row_index=index,
        customer_id=_text("customer_id"),
        facility_id=_text("facility_id"),
        period=_text("period"),
        message=message,
    )


def _validation_message(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"])
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_loan_rows(
    rows: Iterable[Mapping[str, Any]],
) -> tuple[list[LoanRecord], list[RecordIssue]]:
    """Validate mapped rows into LoanRecords, skipping invalid rows."""
    records: list[LoanRecord] = []
    issues: list[RecordIssue] = []
    for index, row in enumerate(rows):
        try:
            records.append(LoanRecord(**row))
        except ValidationError as e:
            message = _validation_message(e)
            logger.warning("Skipping row %d: %s", index, message)
            issues.append(_issue_for(index, row, message))
    logger.info("Parsed %d loan rows (%d skipped)", len(records), len(issues))
    return records, issues


def records_from_frame(df: pd.DataFrame) -> tuple[list[LoanRecord], list[RecordIssue]]:
    """DataFrame variant of ``parse_loan_rows``; NaN/NaT cells count as missing."""
    frame = df.astype(object).where(df.notna(), None)
    rows = []
    for row in frame.to_dict(orient="records"):
        maturity = row.get("maturity_date")
        if isinstance(maturity, datetime):
            row["maturity_date"] = maturity.date()
        rows.append({k: v for k, v in row.items() if v is not None})
    return parse_loan_rows(rows)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------
def classify_loans(
    records: Sequence[LoanRecord], config: PipelineConfig
) -> tuple[list[ClassifiedLoan], list[RecordIssue]]:
    """Attach bucket label and remaining maturity to every record.

    Raises ConfigurationError if a record's period has no reporting date.
    """
    missing = sorted({r.period for r in records} - set(config.period_end_dates))
    if missing:
        raise ConfigurationError(
            "PDCalculation.MissingPeriodEndDate",
            f"No reporting date configured for period(s): {', '.join(missing)}",
        )

    classified: list[ClassifiedLoan] = []
    issues: list[RecordIssue] = []
    for index, record in enumerate(records):
        try:
            label = classify_days_past_due(record.days_past_due, config.buckets)
        except RecordError as e:
            logger.warning("Skipping %s/%s in %s: %s",
                           record.customer_id, record.facility_id, record.period, e.message)
            issues.append(RecordIssue(
                row_index=index,
                customer_id=record.customer_id,
                facility_id=record.facility_id,
                period=record.period,
                message=e.message,
            ))
            continue
        classified.append(ClassifiedLoan(
            **record.model_dump(),
            remaining_maturity_years=remaining_maturity_years(
                config.period_end_dates[record.period], record.maturity_date
            ),
            bucket_label=label,
        ))
    logger.debug("Classified %d loans", len(classified))
    return classified, issues
