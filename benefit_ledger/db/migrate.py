"""Database migration utilities.

Handles schema evolution by applying idempotent migrations keyed by an integer
`schema_version` stored in the metadata table. Each migration upgrades the
SQLite schema in-place while preserving claim data.
"""

from __future__ import annotations
from pathlib import Path
import logging
import sqlite3
from typing import Optional

from . import schema as schema_def
from .schema import init_db

CURRENT_SCHEMA_VERSION = 2
SCHEMA_VERSION_KEY = "schema_version"

logger = logging.getLogger("benefit_ledger.db.migrate")


def _get_schema_version(conn: sqlite3.Connection) -> Optional[int]:
    try:
        cur = conn.cursor()
        cur.execute("SELECT value FROM metadata WHERE key=?", (SCHEMA_VERSION_KEY,))
        row = cur.fetchone()
        if row:
            return int(row[0])
    except sqlite3.OperationalError:
        # metadata table may not exist yet (first run before init_db)
        return None
    return None


def apply_migrations(db_path: Path) -> int:
    """Apply required migrations and return resulting schema version."""
    init_db(db_path)
    conn = sqlite3.connect(db_path)
    try:
        version = _get_schema_version(conn) or 1
        if version < 2:
            _migrate_to_v2(conn)
            version = 2
        _set_schema_version(conn, version)
        conn.commit()
        return version
    finally:
        conn.close()


def _set_schema_version(conn: sqlite3.Connection, version: int) -> None:
    cur = conn.cursor()
    cur.execute(
        "INSERT INTO metadata (key, value) VALUES (?, ?) "
        "ON CONFLICT(key) DO UPDATE SET value=excluded.value, "
        f"updated_at=({schema_def.BASIC_UTC_NOW})",
        (SCHEMA_VERSION_KEY, str(version)),
    )


def _migrate_to_v2(conn: sqlite3.Connection) -> None:
    """Upgrade schema to version 2 (receipt signatures + ledger versioning)."""
    cur = conn.cursor()
    try:
        _ensure_receipt_signature_column(cur)
        _backfill_ledger_versions(cur)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    logger.info("migrated schema to v2")


def _column_names(cur: sqlite3.Cursor, table: str) -> set:
    cur.execute(f"PRAGMA table_info({table})")
    return {row[1] for row in cur.fetchall()}


def _ensure_receipt_signature_column(cur: sqlite3.Cursor) -> None:
    if "receipt_signature" not in _column_names(cur, "claims"):
        cur.execute("ALTER TABLE claims ADD COLUMN receipt_signature TEXT")
    cur.execute(schema_def.CLAIMS_RECEIPT_INDEX_DDL)


def _backfill_ledger_versions(cur: sqlite3.Cursor) -> None:
    """Seed a version row for every employee/period pair that already has claims."""
    cur.execute(
        """
        INSERT OR IGNORE INTO ledger_versions (employee_id, period_id, version)
        SELECT DISTINCT employee_id, period_id, 0 FROM claims
        """
    )
