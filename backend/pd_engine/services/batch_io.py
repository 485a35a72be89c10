"""Bounded-worker batch persistence for classified loans.

Loans are split into disjoint slices and handed to a fixed-size thread
pool; each worker writes (or reads) one slice through its own sink/source
call. The first failure stops the remaining batches from starting and is
re-raised as ``BatchPersistenceError``. Batches that already started run
to completion.
"""
from __future__ import annotations

import logging
import os
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Optional, Protocol, Sequence

from pd_engine.config import settings
from pd_engine.errors import BatchPersistenceError, PipelineCancelled
from pd_engine.models.loan import ClassifiedLoan

logger = logging.getLogger(__name__)


class LoanSink(Protocol):
    def write_batch(self, loans: Sequence[ClassifiedLoan]) -> None: ...


class LoanSource(Protocol):
    def count_loans(self) -> int: ...

    def fetch_page(self, offset: int, limit: int) -> list[ClassifiedLoan]: ...


def default_worker_count() -> int:
    if settings.MAX_WORKERS > 0:
        return settings.MAX_WORKERS
    return max(1, (os.cpu_count() or 1) // 2)


def write_batch_size(total: int) -> int:
    if total <= 10_000:
        return max(total, 1)
    if total <= 50_000:
        return 5_000
    if total <= 200_000:
        return 10_000
    if total <= 500_000:
        return 15_000
    return 20_000


def fetch_page_size(total: int) -> int:
    if total <= 10_000:
        return max(total, 1)
    if total <= 50_000:
        return 10_000
    if total <= 200_000:
        return 20_000
    if total <= 500_000:
        return 30_000
    return 40_000


def _is_cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


def write_in_batches(
    loans: Sequence[ClassifiedLoan],
    sink: LoanSink,
    workers: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> int:
    """Write all loans through ``sink``; returns the number of batches written."""
    if not loans:
        return 0
    size = write_batch_size(len(loans))
    batches = [loans[i:i + size] for i in range(0, len(loans), size)]
    total = len(batches)
    workers = workers or default_worker_count()
    stop = threading.Event()
    start = time.perf_counter()

    def _write(number: int, batch: Sequence[ClassifiedLoan]) -> bool:
        if stop.is_set() or _is_cancelled(cancel):
            return False
        try:
            sink.write_batch(batch)
        except Exception:
            stop.set()
            raise
        logger.debug("Wrote batch %d/%d (%d loans)", number, total, len(batch))
        return True

    logger.info("Writing %d loans in %d batch(es) of up to %d with %d worker(s)",
                len(loans), total, size, workers)
    written = 0
    failure: Optional[tuple[int, BaseException]] = None
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pd-write") as pool:
        futures = {pool.submit(_write, n, batch): n for n, batch in enumerate(batches, 1)}
        for future in as_completed(futures):
            if future.cancelled():
                continue
            exc = future.exception()
            if exc is None:
                written += int(future.result())
                continue
            number = futures[future]
            logger.error("Batch %d/%d failed: %s", number, total, exc)
            if failure is None:
                failure = (number, exc)
                stop.set()
                for pending in futures:
                    pending.cancel()

    if failure is not None:
        number, exc = failure
        raise BatchPersistenceError(
            "PDCalculation.Ingestion.BatchWriteFailed",
            f"Batch {number}/{total} failed: {exc}",
            batch_number=number,
            total_batches=total,
        ) from exc
    if written < total and _is_cancelled(cancel):
        raise PipelineCancelled(f"Cancelled after {written}/{total} batches")

    logger.info("Wrote %d batch(es) in %.2fs", written, time.perf_counter() - start)
    return written


def fetch_in_batches(
    source: LoanSource,
    workers: Optional[int] = None,
    cancel: Optional[threading.Event] = None,
) -> list[ClassifiedLoan]:
    """Read every loan from ``source`` in pages, preserving page order."""
    total = source.count_loans()
    if total == 0:
        return []
    size = fetch_page_size(total)
    offsets = list(range(0, total, size))
    workers = workers or default_worker_count()
    stop = threading.Event()
    pages: dict[int, list[ClassifiedLoan]] = {}

    def _fetch(offset: int) -> Optional[list[ClassifiedLoan]]:
        if stop.is_set() or _is_cancelled(cancel):
            return None
        try:
            return source.fetch_page(offset, size)
        except Exception:
            stop.set()
            raise

    logger.info("Fetching %d loans in %d page(s) of %d", total, len(offsets), size)
    failure: Optional[tuple[int, BaseException]] = None
    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="pd-fetch") as pool:
        futures = {pool.submit(_fetch, offset): n for n, offset in enumerate(offsets, 1)}
        for future in as_completed(futures):
            if future.cancelled():
                continue
            exc = future.exception()
            number = futures[future]
            if exc is None:
                page = future.result()
                if page is not None:
                    pages[number] = page
                continue
            logger.error("Page %d/%d failed: %s", number, len(offsets), exc)
            if failure is None:
                failure = (number, exc)
                stop.set()
                for pending in futures:
                    pending.cancel()

    if failure is not None:
        number, exc = failure
        raise BatchPersistenceError(
            "PDCalculation.Ingestion.PageFetchFailed",
            f"Page {number}/{len(offsets)} failed: {exc}",
            batch_number=number,
            total_batches=len(offsets),
        ) from exc
    if len(pages) < len(offsets) and _is_cancelled(cancel):
        raise PipelineCancelled(f"Cancelled after {len(pages)}/{len(offsets)} pages")

    return [loan for n in sorted(pages) for loan in pages[n]]
