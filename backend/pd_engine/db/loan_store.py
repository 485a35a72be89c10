"""SQL Server implementation of the loan sink/source used by batch I/O."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Sequence

from pd_engine.db.connection import DatabasePool, db_pool
from pd_engine.db.queries import loans as loan_queries
from pd_engine.models.loan import ClassifiedLoan

logger = logging.getLogger(__name__)


class SqlServerLoanStore:
    """Each call opens its own connection and transaction, so batches can run in parallel."""

    def __init__(self, pool: DatabasePool = db_pool):
        self._pool = pool
        if not self._pool.initialized:
            self._pool.initialize()

    @contextmanager
    def _transaction(self):
        conn = self._pool.get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def write_batch(self, loans: Sequence[ClassifiedLoan]) -> None:
        with self._transaction() as conn:
            inserted = loan_queries.insert_loan_batch(conn, loans)
        logger.debug("Committed %d loans", inserted)

    def count_loans(self) -> int:
        with self._transaction() as conn:
            return loan_queries.count_loans(conn)

    def fetch_page(self, offset: int, limit: int) -> list[ClassifiedLoan]:
        with self._transaction() as conn:
            return loan_queries.fetch_loan_page(conn, offset, limit)

    def clear_loans(self) -> None:
        with self._transaction() as conn:
            loan_queries.clear_loans(conn)
        logger.info("Cleared loan table %s", loan_queries.LOAN_TABLE)
