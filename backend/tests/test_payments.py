from __future__ import annotations

from backend.app import models

FISCAL_YEAR = 2026


def _post_payment(client, unit, amount_cents, **extra):
    payload = {
        "unit_id": str(unit.id),
        "fiscal_year": FISCAL_YEAR,
        "module": "hoa",
        "amount_cents": amount_cents,
        "paid_on": "2026-01-05",
        **extra,
    }
    return client.post("/payments", json=payload)


def _charges(client, unit):
    response = client.get(f"/units/{unit.id}/charges", params={"fiscal_year": FISCAL_YEAR})
    assert response.status_code == 200, response.text
    return response.json()


def test_overpayment_pays_charge_and_leaves_credit(client, unit, make_charge):
    make_charge(unit, 0, 200000)

    response = _post_payment(client, unit, 215000, reference="TRX-1")

    assert response.status_code == 201, response.text
    data = response.json()
    assert [line["kind"] for line in data["allocations"]] == ["base_charge", "credit_created"]
    assert [line["amount_cents"] for line in data["allocations"]] == [200000, 15000]
    assert data["new_credit_balance_cents"] == 15000
    assert data["credit_delta_cents"] == 15000
    assert data["category_label"] == "-Split-"
    assert data["snapshot_status"] == "fresh"
    assert data["payment"]["id"] == data["transaction_id"]
    assert data["payment"]["credit_balance_after_cents"] == 15000

    (charge,) = _charges(client, unit)
    assert charge["status"] == "paid"
    assert charge["paid_amount_cents"] == 200000
    assert charge["payment_ids"] == [data["transaction_id"]]


def test_payment_covering_base_and_penalty(client, unit, make_charge):
    make_charge(unit, 0, 200000, penalty=15000)

    response = _post_payment(client, unit, 215000)

    assert response.status_code == 201, response.text
    data = response.json()
    assert [(line["kind"], line["amount_cents"]) for line in data["allocations"]] == [
        ("base_charge", 200000),
        ("penalty", 15000),
    ]
    assert data["new_credit_balance_cents"] == 0
    assert data["category_label"] == "-Split-"
    assert [line["label"] for line in data["allocations"]] == [
        "2026-00 - Unit 101",
        "2026-00 Penalties - Unit 101",
    ]
    assert _charges(client, unit)[0]["status"] == "paid"


def test_payment_against_negative_balance_repairs_credit(client, unit):
    adjustment = client.post(
        f"/units/{unit.id}/credit-adjustments",
        json={"delta_cents": -10000, "note": "Balance carried from previous system"},
    )
    assert adjustment.status_code == 201, adjustment.text

    response = _post_payment(client, unit, 5000)

    assert response.status_code == 201, response.text
    data = response.json()
    assert [line["kind"] for line in data["allocations"]] == ["credit_repair"]
    assert data["new_credit_balance_cents"] == -5000
    assert data["changed_periods"] == []


def test_exact_payment_across_two_periods(client, unit, make_charge):
    make_charge(unit, 0, 26430)
    make_charge(unit, 1, 65000)

    response = _post_payment(client, unit, 91430)

    assert response.status_code == 201, response.text
    data = response.json()
    assert [line["kind"] for line in data["allocations"]] == ["base_charge", "base_charge"]
    assert sum(line["amount_cents"] for line in data["allocations"]) == 91430
    assert [period["period_key"] for period in data["changed_periods"]] == ["2026-00", "2026-01"]
    assert [charge["status"] for charge in _charges(client, unit)] == ["paid", "paid"]


def test_deleting_payment_restores_charge(client, unit, make_charge):
    make_charge(unit, 0, 200000, penalty=15000)
    created = _post_payment(client, unit, 215000).json()

    response = client.delete(f"/payments/{created['transaction_id']}")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["reversed"] is True
    assert data["new_credit_balance_cents"] == 0
    assert data["credit_delta_cents"] == 0
    assert [period["period_key"] for period in data["changed_periods"]] == ["2026-00"]

    (charge,) = _charges(client, unit)
    assert charge["paid_amount_cents"] == 0
    assert charge["penalty_amount_cents"] == 15000
    assert charge["status"] == "unpaid"
    assert charge["payment_ids"] == []

    second = client.delete(f"/payments/{created['transaction_id']}")
    assert second.status_code == 404
    assert second.json()["detail"]["code"] == "not_found"


def test_deleting_overpayment_removes_created_credit(client, unit, make_charge):
    make_charge(unit, 0, 200000)
    created = _post_payment(client, unit, 215000).json()

    response = client.delete(f"/payments/{created['transaction_id']}", params={"performed_by": "ops"})

    assert response.status_code == 200, response.text
    assert response.json()["new_credit_balance_cents"] == 0
    assert response.json()["credit_delta_cents"] == -15000

    history = client.get(f"/units/{unit.id}/credit-history").json()
    assert [entry["source"] for entry in history] == ["reversal", "payment"]
    assert history[0]["balance_after_cents"] == 0
    assert history[0]["recorded_by"] == "ops"


def test_duplicate_reference_is_rejected(client, db_session, unit, make_charge):
    make_charge(unit, 0, 200000)
    first = _post_payment(client, unit, 50000, reference="BANK-778")
    assert first.status_code == 201, first.text

    duplicate = _post_payment(client, unit, 50000, reference=" BANK-778 ")

    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "duplicate_reference"
    assert db_session.query(models.Payment).count() == 1
    assert _charges(client, unit)[0]["paid_amount_cents"] == 50000


def test_invalid_amounts_are_reported_as_bad_requests(client, unit, make_charge):
    make_charge(unit, 0, 200000)

    zero = _post_payment(client, unit, 0)
    assert zero.status_code == 400
    assert zero.json()["detail"]["code"] == "invalid_amount"

    fractional = _post_payment(client, unit, 10.5)
    assert fractional.status_code == 400
    assert fractional.json()["detail"]["code"] == "validation_error"

    assert _charges(client, unit)[0]["paid_amount_cents"] == 0


def test_payment_for_unknown_unit_returns_not_found(client, seed_client):
    response = client.post(
        "/payments",
        json={"unit_id": "missing", "fiscal_year": FISCAL_YEAR, "amount_cents": 100},
    )

    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "not_found"


def test_preview_does_not_store_anything(client, db_session, unit, make_charge):
    make_charge(unit, 0, 20000)

    response = client.post(
        "/payments/preview",
        json={"unit_id": str(unit.id), "fiscal_year": FISCAL_YEAR, "amount_cents": 25000},
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert [line["kind"] for line in data["allocations"]] == ["base_charge", "credit_created"]
    assert data["new_credit_balance_cents"] == 5000
    assert db_session.query(models.Payment).count() == 0
    assert _charges(client, unit)[0]["status"] == "unpaid"


def test_existing_credit_is_applied_on_request(client, unit, make_charge):
    make_charge(unit, 0, 20000)
    client.post(
        f"/units/{unit.id}/credit-adjustments",
        json={"delta_cents": 30000, "note": "Prepayment"},
    )

    response = _post_payment(client, unit, 5000, use_credit=True)

    assert response.status_code == 201, response.text
    data = response.json()
    assert [(line["kind"], line["amount_cents"]) for line in data["allocations"]] == [
        ("base_charge", 20000),
        ("credit_applied", -15000),
    ]
    assert data["new_credit_balance_cents"] == 15000


def test_list_and_get_payments(client, unit, make_charge):
    make_charge(unit, 0, 20000)
    created = _post_payment(client, unit, 20000, reference="R-1").json()

    listing = client.get("/payments", params={"unit_id": str(unit.id)})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["id"] == created["transaction_id"]

    by_reference = client.get("/payments", params={"reference": "R-1"})
    assert by_reference.json()["total"] == 1

    detail = client.get(f"/payments/{created['transaction_id']}")
    assert detail.status_code == 200
    assert detail.json()["allocations"][0]["allocation_code"] == "alloc_001"

    assert client.get("/payments/does-not-exist").status_code == 404


def test_receipt_renders_amounts_in_major_units(client, unit, make_charge):
    make_charge(unit, 0, 200000)
    created = _post_payment(client, unit, 215000, note="<script>x</script>").json()

    response = client.get(f"/payments/{created['transaction_id']}/receipt")

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    body = response.text
    assert "Payment receipt" in body
    assert "$2,150.00" in body
    assert "Credit on account: $150.00" in body
    assert "&lt;script&gt;" in body
    assert "<script>x</script>" not in body


def test_unpaid_summary_after_partial_payment(client, unit, make_charge):
    make_charge(unit, 0, 20000)
    make_charge(unit, 1, 20000)
    _post_payment(client, unit, 25000)

    response = client.get(f"/units/{unit.id}/unpaid-summary")

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["total_due_cents"] == 15000
    assert [(item["period_key"], item["status"]) for item in data["items"]] == [
        ("2026-01", "partial")
    ]


def test_payments_write_audit_trail_and_metrics(client, db_session, unit, make_charge):
    make_charge(unit, 0, 20000)
    created = _post_payment(client, unit, 20000, recorded_by="front-desk").json()
    client.delete(f"/payments/{created['transaction_id']}")

    actions = [
        models.PaymentAuditAction(entry.action).value
        for entry in db_session.query(models.PaymentAuditLog)
        .filter(models.PaymentAuditLog.payment_id == created["transaction_id"])
        .all()
    ]
    assert sorted(actions) == ["created", "deleted"]

    event_types = {event.event_type for event in db_session.query(models.OperationalMetricEvent)}
    assert {"payments.recorded", "payments.reversed"} <= event_types
