"""Database schema DDL definitions and initialization utilities.

Tables:
  - periods: period catalog (accrual + submission windows, explicit next link)
  - employees: eligible employees and their benefit basket ceiling
  - expense_types: expense type catalog with allowed origins
  - claims: individual expense claims and their allocation split
  - ledger_versions: optimistic-concurrency counter per employee/period
  - audit_logs: append-only lifecycle trail
  - metadata: key/value store (schema version)
"""

from __future__ import annotations
import sqlite3
from typing import Sequence
from pathlib import Path

BASIC_UTC_NOW = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"

PERIODS_DDL = f"""
CREATE TABLE IF NOT EXISTS periods (
    id TEXT PRIMARY KEY,
    label TEXT NOT NULL,
    accrual_start TEXT NOT NULL, -- ISO date
    accrual_end TEXT NOT NULL,
    submission_open TEXT NOT NULL,
    submission_close TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'aberto' CHECK (status IN ('aberto','fechado')),
    next_period_id TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    FOREIGN KEY (next_period_id) REFERENCES periods(id) ON DELETE SET NULL
);
"""

EMPLOYEES_DDL = f"""
CREATE TABLE IF NOT EXISTS employees (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    ceiling REAL NOT NULL DEFAULT 0 CHECK (ceiling >= 0),
    user_id TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

EXPENSE_TYPES_DDL = f"""
CREATE TABLE IF NOT EXISTS expense_types (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    allowed_origins TEXT NOT NULL, -- JSON list: 'proprio' | 'conjuge' | 'filhos'
    classification TEXT NOT NULL CHECK (classification IN ('fixo','variavel')),
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

CLAIMS_DDL = f"""
CREATE TABLE IF NOT EXISTS claims (
    id TEXT PRIMARY KEY,
    employee_id TEXT NOT NULL,
    period_id TEXT NOT NULL,
    expense_type_id TEXT NOT NULL,
    origin TEXT NOT NULL CHECK (origin IN ('proprio','conjuge','filhos')),
    description TEXT NOT NULL,
    document_number TEXT,
    receipt_signature TEXT,
    requested REAL NOT NULL CHECK (requested > 0),
    considered REAL NOT NULL CHECK (considered >= 0),
    not_considered REAL NOT NULL CHECK (not_considered >= 0),
    status TEXT NOT NULL DEFAULT 'enviado'
        CHECK (status IN ('enviado','em_analise','valido','invalido')),
    rejection_reason TEXT,
    reviewed_by TEXT,
    reviewed_at TEXT,
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    CHECK (status != 'invalido' OR rejection_reason IS NOT NULL),
    FOREIGN KEY (employee_id) REFERENCES employees(id),
    FOREIGN KEY (period_id) REFERENCES periods(id),
    FOREIGN KEY (expense_type_id) REFERENCES expense_types(id)
);
"""

LEDGER_VERSIONS_DDL = f"""
CREATE TABLE IF NOT EXISTS ledger_versions (
    employee_id TEXT NOT NULL,
    period_id TEXT NOT NULL,
    version INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW}),
    PRIMARY KEY (employee_id, period_id)
);
"""

AUDIT_LOGS_DDL = f"""
CREATE TABLE IF NOT EXISTS audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    actor_id TEXT,
    old_values TEXT, -- JSON
    new_values TEXT, -- JSON
    created_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

METADATA_DDL = f"""
CREATE TABLE IF NOT EXISTS metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({BASIC_UTC_NOW})
);
"""

CLAIMS_LEDGER_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_claims_employee_period "
    "ON claims(employee_id, period_id);"
)
CLAIMS_STATUS_INDEX_DDL = "CREATE INDEX IF NOT EXISTS idx_claims_status ON claims(status);"
CLAIMS_RECEIPT_INDEX_DDL = """
CREATE UNIQUE INDEX IF NOT EXISTS idx_claims_receipt_signature
ON claims(receipt_signature)
WHERE receipt_signature IS NOT NULL;
"""
AUDIT_ENTITY_INDEX_DDL = (
    "CREATE INDEX IF NOT EXISTS idx_audit_entity ON audit_logs(entity_type, entity_id);"
)

DDL_ORDER: Sequence[str] = (
    PERIODS_DDL,
    EMPLOYEES_DDL,
    EXPENSE_TYPES_DDL,
    CLAIMS_DDL,
    LEDGER_VERSIONS_DDL,
    AUDIT_LOGS_DDL,
    METADATA_DDL,
)


def init_db(path: Path) -> None:
    """Create all tables idempotently.

    Parameters
    ----------
    path: Path to SQLite database file.
    """
    conn = sqlite3.connect(path)
    try:
        cur = conn.cursor()
        for ddl in DDL_ORDER:
            cur.execute(ddl)
        _ensure_indexes(cur)
        conn.commit()
    finally:
        conn.close()


def _ensure_indexes(cur: sqlite3.Cursor) -> None:
    """Create indexes, tolerating legacy schemas missing newer columns."""
    for ddl in (
        CLAIMS_LEDGER_INDEX_DDL,
        CLAIMS_STATUS_INDEX_DDL,
        CLAIMS_RECEIPT_INDEX_DDL,
        AUDIT_ENTITY_INDEX_DDL,
    ):
        try:
            cur.execute(ddl)
        except sqlite3.OperationalError:
            # Legacy claims table may lack receipt_signature; migration adds it.
            continue
