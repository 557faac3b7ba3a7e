from __future__ import annotations

from decimal import Decimal

from backend.app.settings import get_settings


def _create_client(client, **payload):
    response = client.post("/clients", json={"name": "Palm Court", **payload})
    assert response.status_code == 201, response.text
    return response.json()


def test_create_and_search_clients(client):
    created = _create_client(client, fiscal_year_start_month=7)
    _create_client(client, name="Harbor View")

    assert created["fiscal_year_start_month"] == 7

    listing = client.get("/clients", params={"search": "palm"})
    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["items"][0]["id"] == created["id"]

    detail = client.get(f"/clients/{created['id']}")
    assert detail.status_code == 200
    assert detail.json()["name"] == "Palm Court"

    assert client.get("/clients/unknown").status_code == 404


def test_fiscal_start_month_defaults_from_environment(client, monkeypatch):
    monkeypatch.setenv("BILLING_DEFAULT_FISCAL_START_MONTH", "4")
    get_settings.cache_clear()

    created = _create_client(client)

    assert created["fiscal_year_start_month"] == 4


def test_blank_client_name_is_rejected(client):
    response = client.post("/clients", json={"name": "   "})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "validation_error"


def test_create_units_and_reject_duplicates(client):
    property_client = _create_client(client)

    response = client.post(
        f"/clients/{property_client['id']}/units",
        json={
            "unit_code": "A-1",
            "owner_name": "Ana",
            "periodic_charge_cents": 150000,
            "opening_credit_balance_cents": -5000,
        },
    )
    assert response.status_code == 201, response.text
    unit = response.json()
    assert unit["credit_balance_cents"] == -5000

    duplicate = client.post(
        f"/clients/{property_client['id']}/units", json={"unit_code": "A-1"}
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "duplicate_unit"

    client.post(f"/clients/{property_client['id']}/units", json={"unit_code": "A-0"})
    units = client.get(f"/clients/{property_client['id']}/units").json()
    assert [item["unit_code"] for item in units] == ["A-0", "A-1"]

    history = client.get(f"/units/{unit['id']}/credit-history").json()
    assert [entry["balance_after_cents"] for entry in history] == [-5000]


def test_billing_config_defaults_and_update(client):
    property_client = _create_client(client)
    url = f"/clients/{property_client['id']}/billing-config/water"

    default = client.get(url)
    assert default.status_code == 200, default.text
    assert default.json()["penalty_mode"] == "compounding"
    assert default.json()["allocation_policy"] == "base_first"
    assert default.json()["module"] == "water"

    updated = client.put(
        url,
        json={
            "penalty_mode": "simple",
            "penalty_rate": "0.05",
            "grace_days": 5,
            "allocation_policy": "penalty_first",
        },
    )
    assert updated.status_code == 200, updated.text
    assert Decimal(str(updated.json()["penalty_rate"])) == Decimal("0.05")
    assert client.get(url).json()["allocation_policy"] == "penalty_first"

    invalid = client.put(url, json={"due_day": 31})
    assert invalid.status_code == 400


def test_generate_charges_builds_snapshot(client, seed_client, seed_units):
    response = client.post(
        f"/clients/{seed_client.id}/charges/generate",
        json={"module": "hoa", "fiscal_year": 2026, "period_index": 0},
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["period_key"] == "2026-00"
    assert len(data["created"]) == 2
    assert {charge["base_amount_cents"] for charge in data["created"]} == {200000}
    assert data["skipped_unit_ids"] == []

    snapshot = client.get(
        f"/aggregates/{seed_client.id}/hoa/2026", params={"rebuild_if_stale": False}
    )
    assert snapshot.status_code == 200
    assert len(snapshot.json()["entries"]) == 2

    again = client.post(
        f"/clients/{seed_client.id}/charges/generate",
        json={"module": "hoa", "fiscal_year": 2026, "period_index": 0},
    )
    assert again.status_code == 201
    assert again.json()["created"] == []
    assert len(again.json()["skipped_unit_ids"]) == 2


def test_generate_charges_for_units_created_through_the_api(client):
    property_client = _create_client(client)
    for code in ("B-1", "B-2", "B-3"):
        created = client.post(
            f"/clients/{property_client['id']}/units",
            json={"unit_code": code, "periodic_charge_cents": 90000},
        )
        assert created.status_code == 201, created.text

    response = client.post(
        f"/clients/{property_client['id']}/charges/generate",
        json={"module": "hoa", "fiscal_year": 2026, "period_index": 4},
    )

    assert response.status_code == 201, response.text
    created = response.json()["created"]
    assert len(created) == 3
    assert len({charge["id"] for charge in created}) == 3
    assert {charge["base_amount_cents"] for charge in created} == {90000}
