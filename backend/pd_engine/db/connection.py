"""SQL Server connections for the loan store.

Batch workers each ask for their own connection; nothing is shared between
threads, so the "pool" only holds the resolved connection string and the
retry policy.
"""
from __future__ import annotations

import logging
import time
from typing import Optional

try:
    import pyodbc
except ImportError:
    pyodbc = None

from pd_engine.config import settings

logger = logging.getLogger(__name__)


class DatabasePool:
    """Opens transactional pyodbc connections, retrying transient failures."""

    def __init__(self, conn_string: Optional[str] = None):
        self._conn_string: str = conn_string or ""
        self._initialized: bool = False

    def initialize(self):
        if not self._conn_string:
            self._conn_string = settings.SQLSERVER_CONN_STRING
        self._initialized = bool(self._conn_string)
        if self._initialized:
            logger.info("Loan store connection configured (timeout=%ss)", settings.DB_CONNECT_TIMEOUT)
        else:
            logger.warning("SQLSERVER_CONN_STRING is empty, persisting or reading loans will fail")

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _connect_once(self):
        # Callers own the transaction: commit per batch, roll back on failure.
        return pyodbc.connect(self._conn_string, timeout=settings.DB_CONNECT_TIMEOUT, autocommit=False)

    def get_connection(self, retries: Optional[int] = None, delay: Optional[float] = None):
        if pyodbc is None:
            raise RuntimeError("pyodbc is not installed (missing ODBC driver)")
        if not self._initialized:
            raise RuntimeError("Loan store connection string is not configured")

        attempts = retries or settings.DB_CONNECT_RETRIES
        wait = settings.DB_CONNECT_RETRY_DELAY if delay is None else delay
        for attempt in range(1, attempts + 1):
            try:
                return self._connect_once()
            except pyodbc.Error as e:
                if attempt == attempts:
                    raise RuntimeError(f"Failed to connect after {attempts} attempts: {e}") from e
                logger.warning("Loan store connect attempt %d/%d failed, retrying in %.1fs: %s",
                               attempt, attempts, wait, e)
                time.sleep(wait)

    def close(self):
        self._initialized = False
        logger.info("Loan store connection released")


db_pool = DatabasePool()
