"""Tests for loan queries and the SQL Server loan store (pyodbc mocked)."""
from datetime import date
from unittest.mock import MagicMock

import pytest

from pd_engine.db import connection as connection_module
from pd_engine.db.connection import DatabasePool
from pd_engine.db.loan_store import SqlServerLoanStore
from pd_engine.db.queries.loans import (
    COLUMN_MAP,
    clear_loans,
    count_loans,
    fetch_loan_page,
    insert_loan_batch,
)
from pd_engine.models.loan import ClassifiedLoan


def _make_loan(record_id: str = "r1") -> ClassifiedLoan:
    return ClassifiedLoan(
        record_id=record_id,
        customer_id="C1",
        facility_id="F1",
        product_category="Retail",
        segment="Personal",
        period="2024",
        days_past_due=12,
        outstanding_balance=250.0,
        maturity_date=date(2027, 1, 1),
        remaining_maturity_years=2,
        bucket_label="1-30",
        final_bucket="31-60",
    )


def test_insert_uses_fast_executemany():
    conn = MagicMock()
    cursor = conn.cursor.return_value
    assert insert_loan_batch(conn, [_make_loan("r1"), _make_loan("r2")]) == 2
    assert cursor.fast_executemany is True
    query, params = cursor.executemany.call_args[0]
    assert "INSERT INTO PdLoanDetails" in query
    assert query.count("?") == len(COLUMN_MAP)
    assert params[1][0] == "r2"
    assert params[0][-1] == "31-60"


def test_insert_empty_batch_is_noop():
    conn = MagicMock()
    assert insert_loan_batch(conn, []) == 0
    conn.cursor.assert_not_called()


def test_fetch_page_maps_columns_back():
    loan = _make_loan()
    conn = MagicMock()
    cursor = conn.cursor.return_value
    cursor.description = [(col,) for col in COLUMN_MAP.values()]
    cursor.fetchall.return_value = [tuple(getattr(loan, f) for f in COLUMN_MAP)]
    loans = fetch_loan_page(conn, 100, 50)
    assert loans == [loan]
    args = cursor.execute.call_args[0]
    assert "OFFSET ? ROWS FETCH NEXT ? ROWS ONLY" in args[0]
    assert args[1:] == (100, 50)


def test_count_and_clear():
    conn = MagicMock()
    cursor = conn.cursor.return_value
    cursor.fetchone.return_value = (42,)
    assert count_loans(conn) == 42
    clear_loans(conn)
    assert cursor.execute.call_args[0][0] == "TRUNCATE TABLE PdLoanDetails"


class TestLoanStore:
    def _store(self):
        pool = MagicMock(spec=DatabasePool)
        pool.initialized = True
        conn = MagicMock()
        pool.get_connection.return_value = conn
        return SqlServerLoanStore(pool), conn

    def test_write_commits_and_closes(self):
        store, conn = self._store()
        store.write_batch([_make_loan()])
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_called_once()

    def test_write_failure_rolls_back(self):
        store, conn = self._store()
        conn.cursor.return_value.executemany.side_effect = RuntimeError("constraint")
        with pytest.raises(RuntimeError):
            store.write_batch([_make_loan()])
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()
        conn.close.assert_called_once()

    def test_initializes_pool_when_needed(self):
        pool = MagicMock(spec=DatabasePool)
        pool.initialized = False
        SqlServerLoanStore(pool)
        pool.initialize.assert_called_once()


class TestDatabasePool:
    def test_uninitialized_pool_raises(self):
        with pytest.raises(RuntimeError):
            DatabasePool().get_connection()

    def test_retries_then_gives_up(self, monkeypatch):
        class _Error(Exception):
            pass

        fake = MagicMock()
        fake.Error = _Error
        fake.connect.side_effect = _Error("login timeout")
        monkeypatch.setattr(connection_module, "pyodbc", fake)
        monkeypatch.setattr(connection_module.time, "sleep", lambda _: None)

        pool = DatabasePool("Driver={ODBC Driver 18 for SQL Server};Server=x")
        pool.initialize()
        with pytest.raises(RuntimeError, match="after 2 attempts"):
            pool.get_connection(retries=2)
        assert fake.connect.call_count == 2

    def test_connect_success(self, monkeypatch):
        fake = MagicMock()
        monkeypatch.setattr(connection_module, "pyodbc", fake)
        pool = DatabasePool("Server=x")
        pool.initialize()
        assert pool.get_connection() is fake.connect.return_value
        fake.connect.assert_called_once_with("Server=x", timeout=30, autocommit=False)

    def test_transient_failure_then_connects(self, monkeypatch):
        class _Error(Exception):
            pass

        fake = MagicMock()
        fake.Error = _Error
        conn = MagicMock()
        fake.connect.side_effect = [_Error("deadlock"), conn]
        monkeypatch.setattr(connection_module, "pyodbc", fake)
        sleeps = []
        monkeypatch.setattr(connection_module.time, "sleep", sleeps.append)

        pool = DatabasePool("Server=x")
        pool.initialize()
        assert pool.get_connection(retries=3, delay=0.5) is conn
        assert sleeps == [0.5]

    def test_empty_connection_string_stays_uninitialized(self, monkeypatch):
        monkeypatch.setattr(connection_module.settings, "SQLSERVER_CONN_STRING", "")
        pool = DatabasePool()
        pool.initialize()
        assert not pool.initialized
        with pytest.raises(RuntimeError, match="not configured"):
            pool.get_connection()

    def test_close_releases_pool(self):
        pool = DatabasePool("Server=x")
        pool.initialize()
        pool.close()
        assert not pool.initialized
