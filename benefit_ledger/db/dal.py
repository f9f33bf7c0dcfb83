"""Data Access Layer for the benefit basket ledger.

Responsibilities
----------------
- CRUD helpers for periods, employees and expense types (administration).
- Claim reads with filters, and claim writes guarded by an optimistic
  per employee/period ledger version: every write that changes the claims of
  a pair compares the version read with the snapshot and bumps it, inside a
  single ``BEGIN IMMEDIATE`` transaction.
- Append-only audit log storage.

Rows are returned as plain dicts; ``row_to_*`` helpers build pydantic models.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
import json
import sqlite3
import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from benefit_ledger.core.errors import (
    InvalidTransitionError,
    LedgerConflictError,
    NotFoundError,
    ValidationError,
)
from benefit_ledger.models import (
    ClaimOut,
    EmployeeOut,
    ExpenseTypeOut,
    PeriodOut,
)
from benefit_ledger.models.constants import ClaimStatus, PENDING_STATUSES
from benefit_ledger.services.money import to_money

UTC_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"
PERIOD_FIELDS = (
    "label",
    "accrual_start",
    "accrual_end",
    "submission_open",
    "submission_close",
    "status",
    "next_period_id",
)
EMPLOYEE_FIELDS = ("name", "ceiling", "user_id")
CLAIM_EDIT_FIELDS = (
    "expense_type_id",
    "origin",
    "description",
    "document_number",
    "requested",
    "considered",
    "not_considered",
)
CLAIM_REVIEW_FIELDS = ("status", "rejection_reason", "reviewed_by", "reviewed_at")


def _new_id() -> str:
    return str(uuid.uuid4())


def _sql_value(value: Any) -> Any:
    """Normalize python values for sqlite parameters."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return value


# ----------------------------------------------------------------------
# Row conversion
def row_to_period(row: Dict[str, Any]) -> PeriodOut:
    return PeriodOut.model_validate(row)


def row_to_employee(row: Dict[str, Any]) -> EmployeeOut:
    data = dict(row)
    data["ceiling"] = to_money(data["ceiling"])
    return EmployeeOut.model_validate(data)


def row_to_expense_type(row: Dict[str, Any]) -> ExpenseTypeOut:
    data = dict(row)
    data["allowed_origins"] = json.loads(data["allowed_origins"] or "[]")
    return ExpenseTypeOut.model_validate(data)


def row_to_claim(row: Dict[str, Any]) -> ClaimOut:
    data = dict(row)
    for key in ("requested", "considered", "not_considered"):
        data[key] = to_money(data[key])
    return ClaimOut.model_validate(data)


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Cursor]:
        """Serialized write transaction (takes sqlite's RESERVED lock up front)."""
        conn = self._connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn.cursor()
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Periods
    def create_period(self, data: Dict[str, Any]) -> str:
        period_id = _new_id()
        with self._write() as cur:
            cur.execute(
                f"""
                INSERT INTO periods (
                    id, label, accrual_start, accrual_end, submission_open,
                    submission_close, status, next_period_id, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (period_id, *(_sql_value(data.get(f)) for f in PERIOD_FIELDS)),
            )
        return period_id

    def update_period(self, period_id: str, fields: Dict[str, Any]) -> None:
        sets = [f"{k} = ?" for k in fields if k in PERIOD_FIELDS]
        if not sets:
            return
        params = [_sql_value(v) for k, v in fields.items() if k in PERIOD_FIELDS]
        with self._write() as cur:
            cur.execute(
                f"UPDATE periods SET {', '.join(sets)}, updated_at = ({UTC_NOW_SQL}) WHERE id = ?",
                (*params, period_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("period", period_id)

    def get_period(self, period_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM periods WHERE id = ?", (period_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    def list_periods(self, status: Optional[str] = None) -> List[Dict[str, Any]]:
        query = "SELECT * FROM periods"
        params: List[Any] = []
        if status:
            query += " WHERE status = ?"
            params.append(status)
        query += " ORDER BY accrual_start DESC"
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(query, params)
            return [dict(r) for r in cur.fetchall()]

    def get_current_period(self, today: date) -> Optional[Dict[str, Any]]:
        """Period whose accrual window contains ``today``; else the most recent one."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT * FROM periods
                WHERE accrual_start <= ? AND accrual_end >= ?
                ORDER BY accrual_start DESC
                LIMIT 1
                """,
                (today.isoformat(), today.isoformat()),
            )
            row = cur.fetchone()
            if not row:
                cur.execute("SELECT * FROM periods ORDER BY accrual_start DESC LIMIT 1")
                row = cur.fetchone()
            return dict(row) if row else None

    # ------------------------------------------------------------------
    # Employees
    def create_employee(self, data: Dict[str, Any]) -> str:
        employee_id = _new_id()
        with self._write() as cur:
            cur.execute(
                f"""
                INSERT INTO employees (id, name, ceiling, user_id, created_at, updated_at)
                VALUES (?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                """,
                (employee_id, *(_sql_value(data.get(f)) for f in EMPLOYEE_FIELDS)),
            )
        return employee_id

    def update_employee(self, employee_id: str, fields: Dict[str, Any]) -> None:
        sets = [f"{k} = ?" for k in fields if k in EMPLOYEE_FIELDS]
        if not sets:
            return
        params = [_sql_value(v) for k, v in fields.items() if k in EMPLOYEE_FIELDS]
        with self._write() as cur:
            cur.execute(
                f"UPDATE employees SET {', '.join(sets)}, updated_at = ({UTC_NOW_SQL}) WHERE id = ?",
                (*params, employee_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("employee", employee_id)
            if "ceiling" in fields:
                # invalidates in-flight allocations in every period
                cur.execute(
                    f"""
                    INSERT INTO ledger_versions (employee_id, period_id, version, updated_at)
                    SELECT ?, id, 1, ({UTC_NOW_SQL}) FROM periods WHERE true
                    ON CONFLICT(employee_id, period_id) DO UPDATE SET
                        version = version + 1,
                        updated_at = ({UTC_NOW_SQL})
                    """,
                    (employee_id,),
                )

    def get_employee(self, employee_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM employees WHERE id = ?", (employee_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    def list_employees(self) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM employees ORDER BY name ASC")
            return [dict(r) for r in cur.fetchall()]

    # ------------------------------------------------------------------
    # Expense types
    def create_expense_type(
        self, name: str, allowed_origins: Sequence[str], classification: str
    ) -> str:
        type_id = _new_id()
        with self._write() as cur:
            cur.execute(
                f"""
                INSERT INTO expense_types (id, name, allowed_origins, classification, created_at)
                VALUES (?, ?, ?, ?, ({UTC_NOW_SQL}))
                """,
                (
                    type_id,
                    name,
                    json.dumps([_sql_value(o) for o in allowed_origins]),
                    _sql_value(classification),
                ),
            )
        return type_id

    def get_expense_type(self, type_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM expense_types WHERE id = ?", (type_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    def list_expense_types(self) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM expense_types ORDER BY name ASC")
            return [dict(r) for r in cur.fetchall()]

    # ------------------------------------------------------------------
    # Claims (reads)
    def get_claim(self, claim_id: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM claims WHERE id = ?", (claim_id,))
            row = cur.fetchone()
            return dict(row) if row else None

    def list_claims(
        self,
        employee_id: Optional[str] = None,
        period_id: Optional[str] = None,
        status: Optional[str] = None,
        expense_type_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in (
            ("employee_id", employee_id),
            ("period_id", period_id),
            ("status", status),
            ("expense_type_id", expense_type_id),
        ):
            if value is not None:
                clauses.append(f"{column} = ?")
                params.append(_sql_value(value))
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"SELECT * FROM claims{where} ORDER BY created_at DESC, id DESC", params
            )
            return [dict(r) for r in cur.fetchall()]

    def list_review_queue(self, period_id: Optional[str] = None) -> List[Dict[str, Any]]:
        pending = tuple(s.value for s in PENDING_STATUSES)
        sql = f"SELECT * FROM claims WHERE status IN ({','.join('?' * len(pending))})"
        params: List[Any] = list(pending)
        if period_id:
            sql += " AND period_id = ?"
            params.append(period_id)
        sql += " ORDER BY created_at ASC, id ASC"
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]

    def receipt_signature_exists(self, signature: str) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "SELECT 1 FROM claims WHERE receipt_signature = ? LIMIT 1", (signature,)
            )
            return cur.fetchone() is not None

    def ledger_snapshot(
        self, employee_id: str, period_id: str
    ) -> Tuple[List[Dict[str, Any]], int]:
        """Return (claims, version) for one employee/period.

        The version is read before the claims: a write landing in between
        leaves the caller with a stale version and fails its compare-and-set.
        """
        with self._connect() as conn:
            cur = conn.cursor()
            version = self._read_version(cur, employee_id, period_id)
            cur.execute(
                "SELECT * FROM claims WHERE employee_id = ? AND period_id = ? ORDER BY created_at ASC",
                (employee_id, period_id),
            )
            return [dict(r) for r in cur.fetchall()], version

    # ------------------------------------------------------------------
    # Ledger versioning
    @staticmethod
    def _read_version(cur: sqlite3.Cursor, employee_id: str, period_id: str) -> int:
        cur.execute(
            "SELECT version FROM ledger_versions WHERE employee_id = ? AND period_id = ?",
            (employee_id, period_id),
        )
        row = cur.fetchone()
        return int(row[0]) if row else 0

    def _check_and_bump(
        self, cur: sqlite3.Cursor, employee_id: str, period_id: str, expected: int
    ) -> None:
        if self._read_version(cur, employee_id, period_id) != expected:
            raise LedgerConflictError(employee_id, period_id)
        self._bump(cur, employee_id, period_id)

    @staticmethod
    def _bump(cur: sqlite3.Cursor, employee_id: str, period_id: str) -> None:
        cur.execute(
            f"""
            INSERT INTO ledger_versions (employee_id, period_id, version, updated_at)
            VALUES (?, ?, 1, ({UTC_NOW_SQL}))
            ON CONFLICT(employee_id, period_id) DO UPDATE SET
                version = version + 1,
                updated_at = ({UTC_NOW_SQL})
            """,
            (employee_id, period_id),
        )

    # ------------------------------------------------------------------
    # Claims (writes)
    def insert_claim_checked(self, data: Dict[str, Any], expected_version: int) -> str:
        claim_id = _new_id()
        with self._write() as cur:
            self._check_and_bump(
                cur, data["employee_id"], data["period_id"], expected_version
            )
            try:
                cur.execute(
                    f"""
                    INSERT INTO claims (
                        id, employee_id, period_id, expense_type_id, origin, description,
                        document_number, receipt_signature, requested, considered,
                        not_considered, status, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ({UTC_NOW_SQL}), ({UTC_NOW_SQL}))
                    """,
                    (
                        claim_id,
                        data["employee_id"],
                        data["period_id"],
                        data["expense_type_id"],
                        _sql_value(data["origin"]),
                        data["description"],
                        data.get("document_number"),
                        data.get("receipt_signature"),
                        _sql_value(data["requested"]),
                        _sql_value(data["considered"]),
                        _sql_value(data["not_considered"]),
                        ClaimStatus.SUBMITTED.value,
                    ),
                )
            except sqlite3.IntegrityError as e:
                if "receipt_signature" in str(e):
                    raise ValidationError("receipt already used by another claim") from e
                raise
        return claim_id

    def update_claim_checked(
        self,
        claim_id: str,
        fields: Dict[str, Any],
        expected_status: str,
        expected_version: int,
    ) -> None:
        """Apply an edit if the claim is still in ``expected_status``.

        A reviewer moving the claim meanwhile is an invalid transition, not a
        retryable conflict; the status is checked before the version.
        """
        sets = [f"{k} = ?" for k in fields if k in CLAIM_EDIT_FIELDS]
        params = [_sql_value(v) for k, v in fields.items() if k in CLAIM_EDIT_FIELDS]
        with self._write() as cur:
            row = self._locked_claim(cur, claim_id)
            if row["status"] != _sql_value(expected_status):
                raise InvalidTransitionError(claim_id, row["status"], "edit")
            self._check_and_bump(
                cur, row["employee_id"], row["period_id"], expected_version
            )
            cur.execute(
                f"UPDATE claims SET {', '.join(sets)}, updated_at = ({UTC_NOW_SQL}) WHERE id = ?",
                (*params, claim_id),
            )

    def transition_claim(
        self, claim_id: str, expected_status: str, fields: Dict[str, Any]
    ) -> bool:
        """Compare-and-set the review fields; False if the status moved meanwhile."""
        sets = [f"{k} = ?" for k in fields if k in CLAIM_REVIEW_FIELDS]
        params = [_sql_value(v) for k, v in fields.items() if k in CLAIM_REVIEW_FIELDS]
        with self._write() as cur:
            row = self._locked_claim(cur, claim_id)
            cur.execute(
                f"UPDATE claims SET {', '.join(sets)}, updated_at = ({UTC_NOW_SQL}) "
                "WHERE id = ? AND status = ?",
                (*params, claim_id, _sql_value(expected_status)),
            )
            if cur.rowcount == 0:
                return False
            # status changes move amounts between approved/pending/rejected
            self._bump(cur, row["employee_id"], row["period_id"])
            return True

    def delete_claim(self, claim_id: str, expected_status: str) -> bool:
        with self._write() as cur:
            row = self._locked_claim(cur, claim_id)
            cur.execute(
                "DELETE FROM claims WHERE id = ? AND status = ?",
                (claim_id, _sql_value(expected_status)),
            )
            if cur.rowcount == 0:
                return False
            self._bump(cur, row["employee_id"], row["period_id"])
            return True

    @staticmethod
    def _locked_claim(cur: sqlite3.Cursor, claim_id: str) -> Dict[str, Any]:
        cur.execute(
            "SELECT employee_id, period_id, status FROM claims WHERE id = ?", (claim_id,)
        )
        row = cur.fetchone()
        if not row:
            raise NotFoundError("claim", claim_id)
        return dict(row)

    # ------------------------------------------------------------------
    # Audit log
    def insert_audit_log(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str],
        old_values: Optional[Dict[str, Any]],
        new_values: Optional[Dict[str, Any]],
        timestamp: str,
    ) -> int:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO audit_logs (
                    action, entity_type, entity_id, actor_id, old_values, new_values, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    action,
                    entity_type,
                    entity_id,
                    actor_id,
                    json.dumps(old_values, default=str) if old_values is not None else None,
                    json.dumps(new_values, default=str) if new_values is not None else None,
                    timestamp,
                ),
            )
            conn.commit()
            return int(cur.lastrowid)

    def list_audit_logs(
        self, entity_type: Optional[str] = None, entity_id: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        clauses: List[str] = []
        params: List[Any] = []
        if entity_type:
            clauses.append("entity_type = ?")
            params.append(entity_type)
        if entity_id:
            clauses.append("entity_id = ?")
            params.append(entity_id)
        where = (" WHERE " + " AND ".join(clauses)) if clauses else ""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(f"SELECT * FROM audit_logs{where} ORDER BY id ASC", params)
            out = []
            for r in cur.fetchall():
                d = dict(r)
                for key in ("old_values", "new_values"):
                    d[key] = json.loads(d[key]) if d[key] else None
                out.append(d)
            return out
