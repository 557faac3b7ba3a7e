from __future__ import annotations

import dataclasses
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from backend.app import models, schemas
from backend.app.services import (
    AggregationService,
    ChargeLedger,
    PaymentAuditService,
    PaymentService,
    ReversalService,
)
from backend.app.services.allocation import ChargeState
from backend.app.services.errors import (
    ConcurrentModification,
    InvalidAmount,
    TransientStoreError,
)

FISCAL_YEAR = 2026
HOA = models.BillingModule.HOA


def _payload(unit, amount_cents, **extra):
    return schemas.PaymentCreate(
        unit_id=str(unit.id),
        fiscal_year=FISCAL_YEAR,
        amount_cents=amount_cents,
        paid_on=date(2026, 1, 5),
        **extra,
    )


def _fail_audit_with(monkeypatch, error):
    def _raise(cls, *args, **kwargs):
        raise error

    monkeypatch.setattr(PaymentAuditService, "record", classmethod(_raise))


def _version_conflict():
    return StaleDataError("UPDATE statement on table 'units' matched 0 rows")


def _store_outage():
    return OperationalError("INSERT INTO payment_audit_logs", {}, Exception("database is locked"))


def _snapshot_status(db_session, seed_client):
    snapshot = AggregationService.read_snapshot(
        db_session, seed_client.id, HOA, FISCAL_YEAR, rebuild_if_stale=False
    )
    return snapshot.status


def test_version_conflict_while_recording_is_a_concurrent_modification(
    db_session, unit, make_charge, monkeypatch
):
    charge = make_charge(unit, 0, 20000)
    _fail_audit_with(monkeypatch, _version_conflict())

    with pytest.raises(ConcurrentModification) as excinfo:
        PaymentService.record_payment(db_session, _payload(unit, 20000))

    assert excinfo.value.code == ConcurrentModification.code
    db_session.refresh(charge)
    assert charge.base_paid_cents == 0
    assert db_session.query(models.Payment).count() == 0


def test_version_conflict_is_reported_as_service_unavailable(
    client, unit, make_charge, monkeypatch
):
    make_charge(unit, 0, 20000)
    _fail_audit_with(monkeypatch, _version_conflict())

    response = client.post(
        "/payments",
        json={
            "unit_id": str(unit.id),
            "fiscal_year": FISCAL_YEAR,
            "module": "hoa",
            "amount_cents": 20000,
            "paid_on": "2026-01-05",
        },
    )

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "concurrent_modification"


def test_store_failure_while_recording_marks_snapshot_stale(
    db_session, seed_client, unit, make_charge, monkeypatch
):
    charge = make_charge(unit, 0, 20000)
    AggregationService.rebuild_all(db_session, seed_client.id, HOA, FISCAL_YEAR)
    assert _snapshot_status(db_session, seed_client) == models.SnapshotStatus.FRESH
    _fail_audit_with(monkeypatch, _store_outage())

    with pytest.raises(TransientStoreError) as excinfo:
        PaymentService.record_payment(db_session, _payload(unit, 20000))

    assert not isinstance(excinfo.value, ConcurrentModification)
    assert _snapshot_status(db_session, seed_client) == models.SnapshotStatus.STALE
    db_session.refresh(charge)
    assert charge.base_paid_cents == 0
    assert db_session.query(models.Payment).count() == 0


def test_version_conflict_while_reversing_keeps_the_payment(
    db_session, unit, make_charge, monkeypatch
):
    charge = make_charge(unit, 0, 20000)
    payment_id = PaymentService.record_payment(db_session, _payload(unit, 20000)).payment.id
    _fail_audit_with(monkeypatch, _version_conflict())

    with pytest.raises(ConcurrentModification):
        ReversalService.reverse_payment(db_session, payment_id)

    assert db_session.get(models.Payment, payment_id) is not None
    db_session.refresh(charge)
    assert charge.base_paid_cents == 20000


def test_version_conflict_while_deleting_is_reported_as_service_unavailable(
    client, db_session, unit, make_charge, monkeypatch
):
    make_charge(unit, 0, 20000)
    payment_id = PaymentService.record_payment(db_session, _payload(unit, 20000)).payment.id
    _fail_audit_with(monkeypatch, _version_conflict())

    response = client.delete(f"/payments/{payment_id}")

    assert response.status_code == 503
    assert response.json()["detail"]["code"] == "concurrent_modification"


def test_store_failure_while_reversing_marks_snapshot_stale(
    db_session, seed_client, unit, make_charge, monkeypatch
):
    charge = make_charge(unit, 0, 20000)
    result = PaymentService.record_payment(db_session, _payload(unit, 20000))
    assert result.snapshot.status == models.SnapshotStatus.FRESH
    payment_id = result.payment.id
    _fail_audit_with(monkeypatch, _store_outage())

    with pytest.raises(TransientStoreError):
        ReversalService.reverse_payment(db_session, payment_id)

    assert _snapshot_status(db_session, seed_client) == models.SnapshotStatus.STALE
    assert db_session.get(models.Payment, payment_id) is not None
    db_session.refresh(charge)
    assert charge.base_paid_cents == 20000


def _allocator_sees_one_extra_cent(monkeypatch):
    original = ChargeState.from_charge

    def _inflated(cls, charge):
        state = original(charge)
        return dataclasses.replace(state, base_amount_cents=state.base_amount_cents + 1)

    monkeypatch.setattr(ChargeState, "from_charge", classmethod(_inflated))


def test_recording_never_trims_an_allocation_line(db_session, unit, make_charge, monkeypatch):
    charge = make_charge(unit, 0, 20000)
    _allocator_sees_one_extra_cent(monkeypatch)

    with pytest.raises(InvalidAmount):
        PaymentService.record_payment(db_session, _payload(unit, 20001))

    db_session.refresh(charge)
    assert charge.base_paid_cents == 0
    assert db_session.query(models.Payment).count() == 0
    assert db_session.query(models.PaymentAllocation).count() == 0


def test_overflowing_allocation_is_rejected_by_the_api(client, unit, make_charge, monkeypatch):
    make_charge(unit, 0, 20000)
    _allocator_sees_one_extra_cent(monkeypatch)

    response = client.post(
        "/payments",
        json={
            "unit_id": str(unit.id),
            "fiscal_year": FISCAL_YEAR,
            "module": "hoa",
            "amount_cents": 20001,
            "paid_on": "2026-01-05",
        },
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_amount"


def test_zero_tolerance_rejects_any_overflow(db_session, unit, make_charge):
    charge = make_charge(unit, 0, 20000)

    with pytest.raises(InvalidAmount):
        ChargeLedger.apply_payment_to_charge(
            charge, 20001, models.AllocationKind.BASE_CHARGE, tolerance=0
        )
    assert charge.base_paid_cents == 0
