from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from backend.app import models
from backend.app.services import ChargeLedger
from backend.app.services.errors import ValidationError
from backend.app.services.ledger import MeterReading

FISCAL_YEAR = 2026


def _water_config(db_session, property_client, *, rate: int = 5000, minimum: int = 20000):
    config = models.BillingConfig(
        client_id=property_client.id,
        module=models.BillingModule.WATER,
        frequency=models.BillingFrequency.MONTHLY,
        due_day=5,
        penalty_mode=models.PenaltyMode.COMPOUNDING,
        penalty_rate=Decimal("0"),
        grace_days=10,
        allocation_policy=models.AllocationPolicy.BASE_FIRST,
        rate_per_m3_cents=rate,
        minimum_charge_cents=minimum,
    )
    db_session.add(config)
    db_session.commit()
    return config


def _water_charges(db_session) -> list[models.Charge]:
    return (
        db_session.query(models.Charge)
        .filter(models.Charge.module == models.BillingModule.WATER)
        .order_by(models.Charge.fiscal_year, models.Charge.period_index)
        .all()
    )


def test_metered_charge_is_consumption_times_rate_with_a_floor():
    config = models.BillingConfig(rate_per_m3_cents=5000, minimum_charge_cents=20000)

    assert ChargeLedger.metered_charge_cents(10, config) == 50000
    assert ChargeLedger.metered_charge_cents(2, config) == 20000
    assert ChargeLedger.metered_charge_cents(0, config) == 20000

    config.minimum_charge_cents = 0
    assert ChargeLedger.metered_charge_cents(0, config) == 0

    with pytest.raises(ValidationError):
        ChargeLedger.metered_charge_cents(-1, config)


def test_water_bills_are_created_from_readings(db_session, seed_client, seed_units):
    _water_config(db_session, seed_client)
    first, second = seed_units["101"], seed_units["102"]

    created, skipped = ChargeLedger.generate_water_bills(
        db_session,
        seed_client.id,
        FISCAL_YEAR,
        3,
        {
            first.id: MeterReading(current_reading=112, prior_reading=100),
            second.id: MeterReading(current_reading=51, prior_reading=50),
        },
    )

    assert skipped == []
    by_unit = {str(charge.unit_id): charge for charge in created}
    assert by_unit[str(first.id)].base_amount_cents == 60000
    assert by_unit[str(first.id)].consumption == 12
    assert by_unit[str(second.id)].base_amount_cents == 20000
    assert by_unit[str(second.id)].consumption == 1
    assert {charge.period_key for charge in created} == {"2026-03"}
    assert {charge.due_date for charge in created} == {date(FISCAL_YEAR, 4, 5)}
    assert {charge.status for charge in created} == {models.ChargeStatus.UNPAID}
    assert len(_water_charges(db_session)) == 2


def test_prior_reading_defaults_to_the_previous_bill(db_session, seed_client, unit):
    _water_config(db_session, seed_client)
    ChargeLedger.generate_water_bills(
        db_session,
        seed_client.id,
        FISCAL_YEAR,
        0,
        {unit.id: MeterReading(current_reading=110, prior_reading=100)},
    )

    created, _ = ChargeLedger.generate_water_bills(
        db_session,
        seed_client.id,
        FISCAL_YEAR,
        1,
        {unit.id: MeterReading(current_reading=118)},
    )

    assert len(created) == 1
    assert created[0].prior_reading == 110
    assert created[0].current_reading == 118
    assert created[0].base_amount_cents == 40000


def test_first_bill_without_prior_reading_is_rejected(db_session, seed_client, seed_units):
    _water_config(db_session, seed_client)

    with pytest.raises(ValidationError):
        ChargeLedger.generate_water_bills(
            db_session,
            seed_client.id,
            FISCAL_YEAR,
            0,
            {
                seed_units["101"].id: MeterReading(current_reading=10, prior_reading=0),
                seed_units["102"].id: MeterReading(current_reading=10),
            },
        )

    assert _water_charges(db_session) == []


def test_reading_below_previous_bill_is_rejected(db_session, seed_client, unit):
    _water_config(db_session, seed_client)
    ChargeLedger.generate_water_bills(
        db_session,
        seed_client.id,
        FISCAL_YEAR,
        0,
        {unit.id: MeterReading(current_reading=110, prior_reading=100)},
    )

    with pytest.raises(ValidationError):
        ChargeLedger.generate_water_bills(
            db_session,
            seed_client.id,
            FISCAL_YEAR,
            1,
            {unit.id: MeterReading(current_reading=105)},
        )

    assert len(_water_charges(db_session)) == 1


def test_units_without_reading_or_already_billed(db_session, seed_client, seed_units):
    _water_config(db_session, seed_client)
    first, second = seed_units["101"], seed_units["102"]
    ChargeLedger.generate_water_bills(
        db_session,
        seed_client.id,
        FISCAL_YEAR,
        0,
        {first.id: MeterReading(current_reading=20, prior_reading=10)},
    )
    assert [str(charge.unit_id) for charge in _water_charges(db_session)] == [str(first.id)]

    created, skipped = ChargeLedger.generate_water_bills(
        db_session,
        seed_client.id,
        FISCAL_YEAR,
        0,
        {
            first.id: MeterReading(current_reading=30, prior_reading=20),
            second.id: MeterReading(current_reading=5, prior_reading=0),
        },
    )

    assert skipped == [str(first.id)]
    assert [str(charge.unit_id) for charge in created] == [str(second.id)]
    assert created[0].base_amount_cents == 25000


def test_zero_consumption_without_minimum_creates_no_bill(db_session, seed_client, unit):
    _water_config(db_session, seed_client, minimum=0)

    created, skipped = ChargeLedger.generate_water_bills(
        db_session,
        seed_client.id,
        FISCAL_YEAR,
        0,
        {unit.id: MeterReading(current_reading=40, prior_reading=40)},
    )

    assert created == []
    assert skipped == []
    assert _water_charges(db_session) == []


def test_water_bill_endpoint(client, seed_client, seed_units):
    config_url = f"/clients/{seed_client.id}/billing-config/water"
    configured = client.put(
        config_url, json={"rate_per_m3_cents": 5000, "minimum_charge_cents": 20000}
    )
    assert configured.status_code == 200, configured.text
    assert configured.json()["rate_per_m3_cents"] == 5000

    unit_id = seed_units["101"].id
    url = f"/clients/{seed_client.id}/water-bills/generate"
    response = client.post(
        url,
        json={
            "fiscal_year": FISCAL_YEAR,
            "period_index": 0,
            "readings": {unit_id: {"prior_reading": 100, "current_reading": 107}},
        },
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["period_key"] == "2026-00"
    assert len(data["created"]) == 1
    bill = data["created"][0]
    assert bill["module"] == "water"
    assert bill["base_amount_cents"] == 35000
    assert bill["consumption"] == 7
    assert bill["prior_reading"] == 100

    charges = client.get(
        f"/units/{unit_id}/charges", params={"module": "water", "period_key": "2026-00"}
    )
    assert charges.status_code == 200, charges.text
    assert [item["current_reading"] for item in charges.json()] == [107]


def test_water_bill_endpoint_rejects_bad_readings(client, seed_client, seed_units):
    url = f"/clients/{seed_client.id}/water-bills/generate"
    unit_id = seed_units["101"].id

    backwards = client.post(
        url,
        json={
            "fiscal_year": FISCAL_YEAR,
            "period_index": 0,
            "readings": {unit_id: {"prior_reading": 10, "current_reading": 5}},
        },
    )
    assert backwards.status_code == 400

    no_prior = client.post(
        url,
        json={
            "fiscal_year": FISCAL_YEAR,
            "period_index": 0,
            "readings": {unit_id: {"current_reading": 5}},
        },
    )
    assert no_prior.status_code == 400
    assert no_prior.json()["detail"]["code"] == "validation_error"

    unknown_unit = client.post(
        url,
        json={
            "fiscal_year": FISCAL_YEAR,
            "period_index": 0,
            "readings": {"not-a-unit": {"prior_reading": 0, "current_reading": 5}},
        },
    )
    assert unknown_unit.status_code == 400
