"""Audit trail writer.

Fire-and-forget from the caller's perspective: a failed audit write is logged
with its traceback but never undoes or blocks the transition it describes.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from benefit_ledger.db.dal import Database

logger = logging.getLogger("benefit_ledger.audit")

CLAIM = "claim"
PERIOD = "period"
EMPLOYEE = "employee"
EXPENSE_TYPE = "expense_type"


class AuditLogger:
    def __init__(self, db: Database):
        self.db = db

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: str,
        actor_id: Optional[str],
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        timestamp: Optional[datetime] = None,
    ) -> None:
        ts = (timestamp or datetime.now(timezone.utc)).isoformat()
        try:
            self.db.insert_audit_log(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                old_values=old_values,
                new_values=new_values,
                timestamp=ts,
            )
        except Exception:
            logger.exception(
                "audit write failed",
                extra={"action": action, "claim_id": entity_id if entity_type == CLAIM else None},
            )

    def history(self, entity_type: str, entity_id: str) -> List[Dict[str, Any]]:
        return self.db.list_audit_logs(entity_type=entity_type, entity_id=entity_id)
