from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from benefit_ledger.core.config import Settings
from benefit_ledger.db.dal import Database
from benefit_ledger.db.migrate import apply_migrations
from benefit_ledger.main import create_app
from benefit_ledger.models import EmployeeIn, ExpenseTypeIn, Origin, PeriodIn
from benefit_ledger.services.catalog import CatalogService
from benefit_ledger.services.identity import build_actor
from benefit_ledger.models.constants import Role
from benefit_ledger.services.lifecycle import ExpenseLifecycle

ADMIN = build_actor("admin-1", [Role.ADMIN])
APPROVER = build_actor("approver-1", [Role.APPROVER])
EMPLOYEE = build_actor("employee-1")
ANONYMOUS = build_actor(None)

ADMIN_HEADERS = {"X-Actor-Id": "admin-1", "X-Actor-Roles": "admin"}
APPROVER_HEADERS = {"X-Actor-Id": "approver-1", "X-Actor-Roles": "approver"}
EMPLOYEE_HEADERS = {"X-Actor-Id": "employee-1"}

# Fixed "now" for service level tests, inside the January window below.
NOW = datetime(2024, 1, 15, 10, 30)


@pytest.fixture
def settings(tmp_path):
    s = Settings(data_dir=tmp_path, debug=False)
    s.init_post_load()
    return s


@pytest.fixture
def db(settings):
    apply_migrations(settings.db_path)
    return Database(settings.db_path)


@pytest.fixture
def catalog(db):
    return CatalogService(db)


@pytest.fixture
def lifecycle(db):
    return ExpenseLifecycle(db, clock=lambda: NOW)


@pytest.fixture
def january(catalog):
    february = catalog.create_period(
        PeriodIn(
            label="2024-02",
            accrual_start=date(2024, 2, 1),
            accrual_end=date(2024, 2, 29),
            submission_open=date(2024, 2, 11),
            submission_close=date(2024, 3, 20),
        ),
        ADMIN,
    )
    return catalog.create_period(
        PeriodIn(
            label="2024-01",
            accrual_start=date(2024, 1, 1),
            accrual_end=date(2024, 1, 31),
            submission_open=date(2024, 1, 11),
            submission_close=date(2024, 1, 20),
            next_period_id=february.id,
        ),
        ADMIN,
    )


@pytest.fixture
def employee(catalog):
    return catalog.create_employee(EmployeeIn(name="Ana", ceiling=Decimal("1000.00")), ADMIN)


@pytest.fixture
def pharmacy(catalog):
    return catalog.create_expense_type(
        ExpenseTypeIn(name="Pharmacy", allowed_origins=[Origin.SELF, Origin.CHILDREN]),
        ADMIN,
    )


@pytest.fixture
def client(settings):
    app = create_app(settings_override=settings)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def api_setup(client):
    """Open period around today plus one employee and one expense type, via the API."""
    today = date.today()
    period = client.post(
        "/periods/",
        json={
            "label": "current",
            "accrual_start": (today - timedelta(days=10)).isoformat(),
            "accrual_end": (today + timedelta(days=10)).isoformat(),
            "submission_open": (today - timedelta(days=5)).isoformat(),
            "submission_close": (today + timedelta(days=5)).isoformat(),
        },
        headers=ADMIN_HEADERS,
    )
    assert period.status_code == 201, period.text
    employee = client.post(
        "/employees/", json={"name": "Bruno", "ceiling": 1000}, headers=ADMIN_HEADERS
    )
    assert employee.status_code == 201, employee.text
    expense_type = client.post(
        "/expense-types/",
        json={"name": "Gym", "allowed_origins": ["proprio"], "classification": "fixo"},
        headers=ADMIN_HEADERS,
    )
    assert expense_type.status_code == 201, expense_type.text
    return {
        "period": period.json(),
        "employee": employee.json(),
        "expense_type": expense_type.json(),
    }
