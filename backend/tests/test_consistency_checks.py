from contextlib import contextmanager
from datetime import date

from backend.app import models, schemas
from backend.app.scripts import reconcile_ledger
from backend.app.services import AggregationService, LedgerConsistencyService, PaymentService


def _pay(db_session, unit, amount_cents):
    return PaymentService.record_payment(
        db_session,
        schemas.PaymentCreate(
            unit_id=str(unit.id),
            fiscal_year=2026,
            amount_cents=amount_cents,
            paid_on=date(2026, 1, 5),
        ),
    )


def test_ledger_consistency_endpoint_reports_clean_state(client, unit, make_charge):
    make_charge(unit, 0, 20000)
    response = client.post(
        "/payments",
        json={"unit_id": str(unit.id), "fiscal_year": 2026, "amount_cents": 25000},
    )
    assert response.status_code == 201, response.text

    consistency = client.get("/consistency/ledger")
    assert consistency.status_code == 200
    data = consistency.json()

    assert data["is_consistent"] is True
    assert data["charge_violations"] == []
    assert data["allocation_mismatches"] == []
    assert data["credit_mismatches"] == []
    assert data["snapshot_drift"] == []


def test_charge_status_mismatch_is_reported(db_session, unit, make_charge):
    charge = make_charge(unit, 0, 20000)
    charge.base_paid_cents = 20000
    db_session.commit()

    report = LedgerConsistencyService.ledger_report(db_session)

    assert not report.is_consistent
    (violation,) = report.charge_violations
    assert violation.period_key == "2026-00"
    assert "should be paid" in violation.problem


def test_allocation_sum_mismatch_is_reported(db_session, unit, make_charge):
    make_charge(unit, 0, 20000)
    result = _pay(db_session, unit, 20000)
    line = db_session.query(models.PaymentAllocation).one()
    line.amount_cents = 15000
    db_session.commit()

    mismatches = LedgerConsistencyService.allocation_mismatches(db_session)

    assert len(mismatches) == 1
    assert mismatches[0].payment_id == str(result.payment.id)
    assert (mismatches[0].amount_cents, mismatches[0].allocated_cents) == (20000, 15000)


def test_unjournaled_credit_change_is_reported(db_session, seed_units):
    unit = seed_units["102"]
    unit.credit_balance_cents = 5000
    db_session.commit()

    (mismatch,) = LedgerConsistencyService.credit_mismatches(db_session)

    assert mismatch.unit_id == str(unit.id)
    assert mismatch.balance_cents == 5000
    assert mismatch.history_balance_cents is None


def test_snapshot_drift_is_reported_and_rebuilt_by_script(
    db_session, seed_client, unit, make_charge, monkeypatch
):
    charge = make_charge(unit, 0, 20000)
    AggregationService.rebuild_all(db_session, seed_client.id, models.BillingModule.HOA, 2026)
    charge.base_amount_cents = 30000
    db_session.commit()

    drift = LedgerConsistencyService.snapshot_drift(db_session)
    fields = {item.field for item in drift}
    assert {"base_amount_cents", "total_due_cents"} <= fields

    @contextmanager
    def _scope():
        yield db_session
        db_session.commit()

    monkeypatch.setattr(reconcile_ledger, "session_scope", _scope)

    assert reconcile_ledger.main(["--rebuild"]) == 0
    assert LedgerConsistencyService.snapshot_drift(db_session) == []


def test_script_exits_non_zero_on_ledger_findings(db_session, seed_units, monkeypatch):
    seed_units["101"].credit_balance_cents = -100
    db_session.commit()

    @contextmanager
    def _scope():
        yield db_session

    monkeypatch.setattr(reconcile_ledger, "session_scope", _scope)

    assert reconcile_ledger.main([]) == 1
