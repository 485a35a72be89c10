#!/usr/bin/env python3
"""Run the PD pipeline over snapshot CSV files and write the result as JSON.

Usage:
    python scripts/run_pd_pipeline.py --config pd_config.json PD_2023Q1_01.csv PD_2024Q1_01.csv
    python scripts/run_pd_pipeline.py --config pd_config.json data/*.csv --out pd_result.json
    python scripts/run_pd_pipeline.py --config pd_config.json data/*.csv --persist
    python scripts/run_pd_pipeline.py --config pd_config.json --from-db

CSV files hold already-mapped columns (customer_id, facility_id,
product_category, segment, days_past_due, outstanding_balance,
maturity_date and optionally period). When ``period`` is missing it is
taken from the file name (PD_<period>_<part>.csv).
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

import pandas as pd

from pd_engine.calculations.periods import parse_snapshot_name
from pd_engine.config import settings
from pd_engine.db.loan_store import SqlServerLoanStore
from pd_engine.models.setup import PipelineConfig
from pd_engine.services.ingestion import records_from_frame
from pd_engine.services.pipeline_service import run_pipeline, run_pipeline_from_source

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s  %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

_TEXT_COLUMNS = ["customer_id", "facility_id", "product_category", "segment", "period"]


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------
def load_config(path: Path) -> PipelineConfig:
    with open(path) as f:
        return PipelineConfig.model_validate(json.load(f))


def load_snapshots(paths: list[Path], frequency: str) -> pd.DataFrame:
    """Concatenate snapshot CSVs, filling ``period`` from file names where absent."""
    frames = []
    for path in paths:
        df = pd.read_csv(path, dtype={c: str for c in _TEXT_COLUMNS})
        if "maturity_date" in df.columns:
            df["maturity_date"] = pd.to_datetime(df["maturity_date"], errors="coerce")
        if "period" not in df.columns:
            parsed = parse_snapshot_name(path.name)
            if parsed is None:
                raise SystemExit(f"{path.name}: no 'period' column and file name is not PD_<period>_<part>")
            file_frequency, period = parsed
            if file_frequency.value != frequency.strip().lower():
                logger.warning("%s looks %s but the run is configured as %s",
                               path.name, file_frequency.value, frequency)
            df["period"] = period
        logger.info("Loaded %d rows from %s", len(df), path.name)
        frames.append(df)
    return pd.concat(frames, ignore_index=True)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------
def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run the PD calculation pipeline")
    parser.add_argument("snapshots", nargs="*", type=Path, help="Snapshot CSV files")
    parser.add_argument("--config", required=True, type=Path, help="Pipeline configuration JSON")
    parser.add_argument("--out", type=Path, default=Path("pd_result.json"),
                        help="Output JSON path (default: pd_result.json)")
    parser.add_argument("--persist", action="store_true",
                        help="Replace the SQL Server loan table with the classified loans")
    parser.add_argument("--from-db", action="store_true",
                        help="Skip CSV ingestion and read classified loans from SQL Server")
    args = parser.parse_args(argv)

    config = load_config(args.config)

    if args.from_db:
        result = run_pipeline_from_source(config, SqlServerLoanStore())
    else:
        if not args.snapshots:
            parser.error("at least one snapshot CSV is required unless --from-db is given")
        records, issues = records_from_frame(load_snapshots(args.snapshots, config.frequency))
        sink = None
        if args.persist:
            sink = SqlServerLoanStore()
            sink.clear_loans()
        result = run_pipeline(config, records, sink=sink)
        result.record_issues = issues + result.record_issues

    args.out.write_text(result.model_dump_json(indent=2))
    logger.info("Wrote %s", args.out)

    if not result.success:
        logger.error("Pipeline failed: [%s] %s", result.error.code, result.error.message)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
