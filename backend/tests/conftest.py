from __future__ import annotations

import os
import sys
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Generator

import pytest

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ["RUN_MIGRATIONS_ON_STARTUP"] = "0"

# Ensure the project root (which exposes the ``backend`` package) is on ``sys.path``
PROJECT_ROOT = Path(__file__).resolve().parents[2]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from backend.app import models  # noqa: E402
from backend.app.database import Base, get_db  # noqa: E402
from backend.app.main import app  # noqa: E402
from backend.app.settings import get_settings  # noqa: E402

FISCAL_YEAR = 2026


@pytest.fixture
def engine():
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=test_engine)
    try:
        yield test_engine
    finally:
        Base.metadata.drop_all(bind=test_engine)
        test_engine.dispose()


@pytest.fixture
def db_session(engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def _reset_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        try:
            yield db_session
        finally:
            db_session.expire_all()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.pop(get_db, None)


def _add_charge(
    db_session: Session,
    unit: models.Unit,
    period_index: int,
    base: int,
    *,
    penalty: int = 0,
    fiscal_year: int = FISCAL_YEAR,
    module: models.BillingModule = models.BillingModule.HOA,
) -> models.Charge:
    charge = models.Charge(
        unit_id=unit.id,
        module=module,
        fiscal_year=fiscal_year,
        period_index=period_index,
        period_key=f"{fiscal_year:04d}-{period_index:02d}",
        due_date=date(fiscal_year, period_index + 1, 1),
        base_amount_cents=base,
        penalty_amount_cents=penalty,
        base_paid_cents=0,
        penalty_paid_cents=0,
    )
    charge.sync_status()
    db_session.add(charge)
    db_session.commit()
    return charge


@pytest.fixture
def make_charge(db_session: Session):
    """Return a helper that stores a charge for a unit and commits it."""

    def _make(unit: models.Unit, period_index: int, base: int, **kwargs) -> models.Charge:
        return _add_charge(db_session, unit, period_index, base, **kwargs)

    return _make


@pytest.fixture
def seed_client(db_session: Session) -> models.Client:
    property_client = models.Client(name="Marina Vista HOA", fiscal_year_start_month=1)
    db_session.add(property_client)
    db_session.flush()

    config = models.BillingConfig(
        client_id=property_client.id,
        module=models.BillingModule.HOA,
        frequency=models.BillingFrequency.MONTHLY,
        due_day=1,
        penalty_mode=models.PenaltyMode.COMPOUNDING,
        penalty_rate=Decimal("0"),
        grace_days=10,
        allocation_policy=models.AllocationPolicy.BASE_FIRST,
    )
    db_session.add(config)
    db_session.commit()
    return property_client


@pytest.fixture
def seed_units(db_session: Session, seed_client: models.Client) -> dict[str, models.Unit]:
    units = {}
    for code in ("101", "102"):
        unit = models.Unit(
            client_id=seed_client.id,
            unit_code=code,
            owner_name=f"Owner {code}",
            periodic_charge_cents=200000,
            credit_balance_cents=0,
        )
        db_session.add(unit)
        units[code] = unit
    db_session.commit()
    return units


@pytest.fixture
def unit(seed_units: dict[str, models.Unit]) -> models.Unit:
    return seed_units["101"]
