"""Shared FastAPI dependencies.

Identity arrives from the upstream auth gateway as two headers:

- ``X-Actor-Id``: the acting user's id
- ``X-Actor-Roles``: comma separated roles (``approver``, ``admin``)
"""

from typing import Optional

from fastapi import Depends, Header

from benefit_ledger.core.config import Settings, get_settings
from benefit_ledger.db.dal import Database
from benefit_ledger.services.audit import AuditLogger
from benefit_ledger.services.catalog import CatalogService
from benefit_ledger.services.identity import Actor, build_actor, parse_roles
from benefit_ledger.services.lifecycle import ExpenseLifecycle


def get_db(settings: Settings = Depends(get_settings)) -> Database:
    return Database(settings.db_path)


def get_actor(
    x_actor_id: Optional[str] = Header(None),
    x_actor_roles: Optional[str] = Header(None),
) -> Actor:
    return build_actor(x_actor_id, parse_roles(x_actor_roles))


def get_lifecycle(
    db: Database = Depends(get_db), settings: Settings = Depends(get_settings)
) -> ExpenseLifecycle:
    return ExpenseLifecycle(
        db,
        AuditLogger(db),
        max_retries=settings.allocation_max_retries,
        currency_symbol=settings.currency_symbol,
    )


def get_catalog(db: Database = Depends(get_db)) -> CatalogService:
    return CatalogService(db, AuditLogger(db))
