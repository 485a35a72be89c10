"""PD pipeline orchestration service.

Runs the four stages in order and converts every failure into a tagged
``PipelineResult``:

1. Ingestion: validate configuration, classify loans, resolve final
   buckets, optionally persist through a batch sink
2. Migration matrices per period pair and segment
3. PD summary (historical + interpolated PD per bucket)
4. Multi-year extrapolation under the three methods

Cancellation is checked before each stage and between persistence batches.
"""
from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from pd_engine.calculations.bucket_classifier import ordered_labels, validate_buckets, worst_bucket
from pd_engine.calculations.extrapolation import build_extrapolation, validate_efa_schedule
from pd_engine.calculations.final_bucket import apply_final_buckets, resolve_final_buckets
from pd_engine.calculations.migration import build_migration_matrices
from pd_engine.calculations.periods import parse_frequency
from pd_engine.calculations.summary import build_pd_summary
from pd_engine.errors import PipelineCancelled, PipelineError
from pd_engine.models.loan import ClassifiedLoan, LoanRecord
from pd_engine.models.result import (
    ErrorCategory,
    PipelineErrorInfo,
    PipelineResult,
    PipelineStage,
    StageResult,
)
from pd_engine.models.setup import Frequency, PipelineConfig
from pd_engine.services.batch_io import LoanSink, LoanSource, fetch_in_batches, write_in_batches
from pd_engine.services.ingestion import classify_loans, parse_loan_rows

logger = logging.getLogger(__name__)

LoanInput = Union[LoanRecord, Mapping[str, Any]]


def _check_cancel(cancel: Optional[threading.Event]) -> None:
    if cancel is not None and cancel.is_set():
        raise PipelineCancelled()


@contextmanager
def _stage(result: PipelineResult, stage: PipelineStage, cancel: Optional[threading.Event]):
    _check_cancel(cancel)
    logger.info("Stage %s started", stage.value)
    start = time.perf_counter()
    try:
        yield
    except PipelineError as e:
        _record_stage(result, stage, start, e)
        raise
    except Exception as e:
        logger.exception("Unexpected error in stage %s", stage.value)
        err = PipelineError(f"PDCalculation.{stage.value}.UnexpectedError", str(e))
        err.category = (
            ErrorCategory.persistence if stage == PipelineStage.ingestion else ErrorCategory.configuration
        )
        _record_stage(result, stage, start, err)
        raise err from e
    else:
        _record_stage(result, stage, start)


def _record_stage(
    result: PipelineResult, stage: PipelineStage, start: float, error: Optional[PipelineError] = None
) -> None:
    elapsed = time.perf_counter() - start
    info = None
    if error is not None:
        info = PipelineErrorInfo(category=error.category, code=error.code, message=error.message)
        logger.error("Stage %s failed after %.2fs: [%s] %s", stage.value, elapsed, error.code, error.message)
    else:
        logger.info("Stage %s finished in %.2fs", stage.value, elapsed)
    result.stages.append(StageResult(stage=stage, success=error is None, error=info, elapsed_seconds=elapsed))


def _validate_config(config: PipelineConfig) -> Frequency:
    validate_buckets(config.buckets)
    validate_efa_schedule(config.efa_schedule)
    return parse_frequency(config.frequency)


def _coerce_records(records: Iterable[LoanInput], result: PipelineResult) -> list[LoanRecord]:
    items = list(records)
    if all(isinstance(r, LoanRecord) for r in items):
        return items
    rows = [r.model_dump() if isinstance(r, LoanRecord) else r for r in items]
    valid, issues = parse_loan_rows(rows)
    result.record_issues.extend(issues)
    return valid


def _run_downstream(
    result: PipelineResult,
    config: PipelineConfig,
    frequency: Frequency,
    loans: Sequence[ClassifiedLoan],
    cancel: Optional[threading.Event],
) -> None:
    labels = ordered_labels(config.buckets)

    with _stage(result, PipelineStage.migration, cancel):
        matrices, notes = build_migration_matrices(
            loans, labels, worst_bucket(config.buckets), frequency, config.segments, cancel=cancel,
        )
        result.migration_matrices = matrices
        result.segment_notes.extend(notes)

    with _stage(result, PipelineStage.summary, cancel):
        result.pd_summary = build_pd_summary(matrices, labels, loans)

    with _stage(result, PipelineStage.extrapolation, cancel):
        result.extrapolation = build_extrapolation(result.pd_summary, config.efa_schedule)


def _fail(result: PipelineResult, error: PipelineError) -> PipelineResult:
    result.success = False
    result.error = PipelineErrorInfo(category=error.category, code=error.code, message=error.message)
    return result


def run_pipeline(
    config: PipelineConfig,
    records: Iterable[LoanInput],
    sink: Optional[LoanSink] = None,
    cancel: Optional[threading.Event] = None,
) -> PipelineResult:
    """Run all four stages over in-memory records.

    ``records`` may mix LoanRecord models and already-column-mapped dict
    rows; invalid rows are skipped and reported in ``record_issues``.
    Never raises: failures come back as ``success=False`` with an error.
    """
    result = PipelineResult()
    start = time.perf_counter()
    try:
        with _stage(result, PipelineStage.ingestion, cancel):
            frequency = _validate_config(config)
            loan_records = _coerce_records(records, result)
            classified, issues = classify_loans(loan_records, config)
            result.record_issues.extend(issues)
            final_buckets = resolve_final_buckets(classified, config.final_bucket_policy, config.buckets)
            loans = apply_final_buckets(classified, final_buckets)
            result.records_ingested = len(loans)
            if sink is not None:
                write_in_batches(loans, sink, cancel=cancel)

        _run_downstream(result, config, frequency, loans, cancel)
    except PipelineError as e:
        return _fail(result, e)

    logger.info("PD pipeline finished in %.2fs: %d loans, %d record issue(s), %d segment note(s)",
                time.perf_counter() - start, result.records_ingested,
                len(result.record_issues), len(result.segment_notes))
    return result


def run_pipeline_from_source(
    config: PipelineConfig,
    source: LoanSource,
    cancel: Optional[threading.Event] = None,
) -> PipelineResult:
    """Run stages 2-4 over loans already classified and persisted in ``source``."""
    result = PipelineResult()
    try:
        with _stage(result, PipelineStage.ingestion, cancel):
            frequency = _validate_config(config)
            loans = fetch_in_batches(source, cancel=cancel)
            result.records_ingested = len(loans)

        _run_downstream(result, config, frequency, loans, cancel)
    except PipelineError as e:
        return _fail(result, e)
    return result
