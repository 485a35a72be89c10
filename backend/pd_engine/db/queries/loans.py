from typing import Sequence

from pd_engine.models.loan import ClassifiedLoan

LOAN_TABLE = "PdLoanDetails"

# Map Pydantic field names to SQL column names.
COLUMN_MAP = {
    "record_id": "RecordID",
    "customer_id": "CustomerNumber",
    "facility_id": "FacilityNumber",
    "product_category": "ProductCategory",
    "segment": "Segment",
    "period": "Period",
    "days_past_due": "DaysPastDue",
    "outstanding_balance": "OutstandingBalance",
    "maturity_date": "MaturityDate",
    "remaining_maturity_years": "RemainingMaturityYears",
    "bucket_label": "BucketLabel",
    "final_bucket": "FinalBucket",
}

_FIELDS = list(COLUMN_MAP)
_SQL_COLUMNS = ", ".join(COLUMN_MAP.values())


def insert_loan_batch(conn, loans: Sequence[ClassifiedLoan]) -> int:
    """Insert one batch on ``conn``; the caller owns the transaction."""
    if not loans:
        return 0
    placeholders = ", ".join("?" for _ in _FIELDS)
    query = f"INSERT INTO {LOAN_TABLE} ({_SQL_COLUMNS}) VALUES ({placeholders})"
    params = [tuple(getattr(loan, f) for f in _FIELDS) for loan in loans]
    cursor = conn.cursor()
    cursor.fast_executemany = True
    cursor.executemany(query, params)
    return len(params)


def count_loans(conn) -> int:
    cursor = conn.cursor()
    cursor.execute(f"SELECT COUNT(*) FROM {LOAN_TABLE}")
    return int(cursor.fetchone()[0])


def fetch_loan_page(conn, offset: int, limit: int) -> list[ClassifiedLoan]:
    """Fetch one page of loans in stable (Period, RecordID) order."""
    query = f"""
        SELECT {_SQL_COLUMNS}
        FROM {LOAN_TABLE}
        ORDER BY Period, RecordID
        OFFSET ? ROWS FETCH NEXT ? ROWS ONLY
    """
    cursor = conn.cursor()
    cursor.execute(query, offset, limit)
    rows = cursor.fetchall()

    reverse_map = {v: k for k, v in COLUMN_MAP.items()}
    columns = [reverse_map.get(desc[0], desc[0]) for desc in cursor.description]
    return [ClassifiedLoan(**dict(zip(columns, row))) for row in rows]


def clear_loans(conn) -> None:
    cursor = conn.cursor()
    cursor.execute(f"TRUNCATE TABLE {LOAN_TABLE}")
