"""Tests for ingestion: row validation, DataFrame adapter, classification, snapshot names."""
from datetime import date

import numpy as np
import pandas as pd
import pytest

from pd_engine.calculations.periods import parse_snapshot_name
from pd_engine.errors import ConfigurationError
from pd_engine.models.setup import BucketDefinition, Frequency, PipelineConfig
from pd_engine.services.ingestion import classify_loans, parse_loan_rows, records_from_frame


def _make_row(**overrides) -> dict:
    defaults = dict(
        customer_id="C1",
        facility_id="F1",
        product_category="Retail",
        segment="Personal",
        period="2024",
        days_past_due=15,
        outstanding_balance=1000.0,
        maturity_date=date(2027, 12, 31),
    )
    defaults.update(overrides)
    return defaults


def _make_config(**overrides) -> PipelineConfig:
    defaults = dict(
        frequency="yearly",
        buckets=[
            BucketDefinition(label="Current", min_days=0, max_days=0),
            BucketDefinition(label="1-30", min_days=1, max_days=30),
            BucketDefinition(label="31+", min_days=31),
        ],
        period_end_dates={"2024": date(2024, 12, 31)},
    )
    defaults.update(overrides)
    return PipelineConfig(**defaults)


class TestParseLoanRows:
    def test_valid_rows_parsed(self):
        records, issues = parse_loan_rows([_make_row(), _make_row(customer_id=1002)])
        assert issues == []
        assert records[1].customer_id == "1002"
        assert records[0].record_id != records[1].record_id

    def test_invalid_rows_skipped_with_issue(self):
        rows = [
            _make_row(),
            _make_row(days_past_due=-5),
            _make_row(customer_id="   "),
            _make_row(days_past_due="lots"),
        ]
        records, issues = parse_loan_rows(rows)
        assert len(records) == 1
        assert [i.row_index for i in issues] == [1, 2, 3]
        assert "days_past_due" in issues[0].message
        assert issues[0].customer_id == "C1"

    def test_missing_required_field(self):
        row = _make_row()
        del row["period"]
        records, issues = parse_loan_rows([row])
        assert records == []
        assert "period" in issues[0].message


def test_records_from_frame_treats_nan_as_missing():
    df = pd.DataFrame([
        _make_row(maturity_date=pd.Timestamp("2026-06-30")),
        _make_row(customer_id="C2", maturity_date=pd.NaT, outstanding_balance=np.nan),
        _make_row(customer_id="C3", days_past_due=np.nan),
    ])
    records, issues = records_from_frame(df)
    assert [r.customer_id for r in records] == ["C1", "C2"]
    assert records[0].maturity_date == date(2026, 6, 30)
    assert records[1].maturity_date is None
    assert records[1].outstanding_balance == 0.0
    assert len(issues) == 1


class TestClassifyLoans:
    def test_bucket_and_maturity_attached(self):
        records, _ = parse_loan_rows([_make_row(), _make_row(customer_id="C2", days_past_due=0)])
        loans, issues = classify_loans(records, _make_config())
        assert issues == []
        assert loans[0].bucket_label == "1-30"
        assert loans[0].remaining_maturity_years == 3
        assert loans[0].final_bucket is None
        assert loans[1].bucket_label == "Current"

    def test_unclassifiable_record_skipped(self):
        config = _make_config(buckets=[
            BucketDefinition(label="Late", min_days=10, max_days=30),
            BucketDefinition(label="Default", min_days=31),
        ])
        records, _ = parse_loan_rows([_make_row(days_past_due=2), _make_row(customer_id="C2")])
        loans, issues = classify_loans(records, config)
        assert [l.customer_id for l in loans] == ["C2"]
        assert issues[0].customer_id == "C1"
        assert issues[0].row_index == 0

    def test_missing_period_end_date_is_configuration_error(self):
        records, _ = parse_loan_rows([_make_row(period="2025")])
        with pytest.raises(ConfigurationError) as exc:
            classify_loans(records, _make_config())
        assert exc.value.code == "PDCalculation.MissingPeriodEndDate"


@pytest.mark.parametrize(
    "name, expected",
    [
        ("PD_2022_01.csv", (Frequency.yearly, "2022")),
        ("PD_2024-01_02.csv", (Frequency.monthly, "2024-01")),
        ("PD_2024Q3_1", (Frequency.quarterly, "2024Q3")),
        ("PD_2024Q5_1.csv", None),
        ("PD_2024-13_1.csv", None),
        ("loans_2024.csv", None),
    ],
)
def test_parse_snapshot_name(name, expected):
    assert parse_snapshot_name(name) == expected
