"""Create the billing ledger, payment and aggregation tables"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None

GUID = sa.String(length=36)
CENTS = sa.BigInteger()


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        server_default=sa.func.now(),
        nullable=False,
    )


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("client_id", GUID, primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("fiscal_year_start_month", sa.Integer(), nullable=False, server_default="1"),
        _created_at(),
        sa.CheckConstraint(
            "fiscal_year_start_month BETWEEN 1 AND 12",
            name="ck_clients_fiscal_year_start_month",
        ),
    )

    op.create_table(
        "billing_configs",
        sa.Column("billing_config_id", GUID, primary_key=True),
        sa.Column(
            "client_id",
            GUID,
            sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("module", sa.String(length=5), nullable=False),
        sa.Column("frequency", sa.String(length=9), nullable=False),
        sa.Column("due_day", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("penalty_mode", sa.String(length=11), nullable=False),
        sa.Column("penalty_rate", sa.Numeric(8, 6), nullable=False, server_default="0"),
        sa.Column("grace_days", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("allocation_policy", sa.String(length=13), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("client_id", "module", name="billing_configs_unique_client_module"),
        sa.CheckConstraint("due_day BETWEEN 1 AND 28", name="ck_billing_configs_due_day"),
        sa.CheckConstraint("penalty_rate >= 0", name="ck_billing_configs_penalty_rate"),
        sa.CheckConstraint("grace_days >= 0", name="ck_billing_configs_grace_days"),
    )
    op.create_index("ix_billing_configs_client_id", "billing_configs", ["client_id"])

    op.create_table(
        "units",
        sa.Column("unit_id", GUID, primary_key=True),
        sa.Column(
            "client_id",
            GUID,
            sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("unit_code", sa.String(length=40), nullable=False),
        sa.Column("owner_name", sa.String(length=200), nullable=True),
        sa.Column("periodic_charge_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("credit_balance_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        _created_at(),
        sa.UniqueConstraint("client_id", "unit_code", name="units_unique_client_code"),
        sa.CheckConstraint("periodic_charge_cents >= 0", name="ck_units_periodic_charge"),
    )
    op.create_index("ix_units_client_id", "units", ["client_id"])

    op.create_table(
        "charges",
        sa.Column("charge_id", GUID, primary_key=True),
        sa.Column(
            "unit_id",
            GUID,
            sa.ForeignKey("units.unit_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("module", sa.String(length=5), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("period_index", sa.Integer(), nullable=False),
        sa.Column("period_key", sa.String(length=7), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("base_amount_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("penalty_amount_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("base_paid_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("penalty_paid_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=7), nullable=False),
        sa.Column("last_penalty_update", sa.Date(), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "unit_id",
            "module",
            "fiscal_year",
            "period_index",
            name="charges_unique_unit_module_period",
        ),
        sa.CheckConstraint("base_amount_cents >= 0", name="ck_charges_base_non_negative"),
        sa.CheckConstraint("penalty_amount_cents >= 0", name="ck_charges_penalty_non_negative"),
        sa.CheckConstraint(
            "base_paid_cents >= 0 AND base_paid_cents <= base_amount_cents",
            name="ck_charges_base_paid_range",
        ),
        sa.CheckConstraint(
            "penalty_paid_cents >= 0 AND penalty_paid_cents <= penalty_amount_cents",
            name="ck_charges_penalty_paid_range",
        ),
    )
    op.create_index("ix_charges_unit_id", "charges", ["unit_id"])

    op.create_table(
        "payments",
        sa.Column("payment_id", GUID, primary_key=True),
        sa.Column(
            "unit_id",
            GUID,
            sa.ForeignKey("units.unit_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "client_id",
            GUID,
            sa.ForeignKey("clients.client_id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("module", sa.String(length=5), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("amount_cents", CENTS, nullable=False),
        sa.Column("paid_on", sa.Date(), nullable=False),
        sa.Column("method", sa.String(length=8), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("reference", sa.String(length=120), nullable=True),
        sa.Column("recorded_by", sa.String(length=120), nullable=True),
        sa.Column("category_label", sa.String(length=120), nullable=False),
        sa.Column("credit_balance_before_cents", CENTS, nullable=False),
        sa.Column("credit_balance_after_cents", CENTS, nullable=False),
        _created_at(),
        sa.CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        sa.UniqueConstraint("unit_id", "reference", name="payments_unique_unit_reference"),
    )
    op.create_index("ix_payments_unit_id", "payments", ["unit_id"])
    op.create_index("ix_payments_client_id", "payments", ["client_id"])

    op.create_table(
        "payment_allocations",
        sa.Column("allocation_id", GUID, primary_key=True),
        sa.Column(
            "payment_id",
            GUID,
            sa.ForeignKey("payments.payment_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("allocation_code", sa.String(length=16), nullable=False),
        sa.Column(
            "charge_id",
            GUID,
            sa.ForeignKey("charges.charge_id", ondelete="RESTRICT"),
            nullable=True,
        ),
        sa.Column("period_key", sa.String(length=7), nullable=True),
        sa.Column("kind", sa.String(length=14), nullable=False),
        sa.Column("amount_cents", CENTS, nullable=False),
        sa.Column("category_name", sa.String(length=120), nullable=False),
        sa.Column("label", sa.String(length=200), nullable=False),
        sa.UniqueConstraint("payment_id", "sequence", name="payment_allocations_unique_sequence"),
        sa.CheckConstraint("amount_cents <> 0", name="ck_payment_allocations_amount_non_zero"),
    )
    op.create_index("ix_payment_allocations_payment_id", "payment_allocations", ["payment_id"])
    op.create_index("ix_payment_allocations_charge_id", "payment_allocations", ["charge_id"])

    op.create_table(
        "credit_balance_entries",
        sa.Column("entry_id", GUID, primary_key=True),
        sa.Column(
            "unit_id",
            GUID,
            sa.ForeignKey("units.unit_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("entry_number", sa.Integer(), nullable=False),
        sa.Column("payment_id", GUID, nullable=True),
        sa.Column("source", sa.String(length=10), nullable=False),
        sa.Column("delta_cents", CENTS, nullable=False),
        sa.Column("balance_before_cents", CENTS, nullable=False),
        sa.Column("balance_after_cents", CENTS, nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("recorded_by", sa.String(length=120), nullable=True),
        _created_at(),
        sa.UniqueConstraint(
            "unit_id", "entry_number", name="credit_balance_entries_unique_number"
        ),
    )
    op.create_index("ix_credit_balance_entries_unit_id", "credit_balance_entries", ["unit_id"])
    op.create_index(
        "ix_credit_balance_entries_payment_id", "credit_balance_entries", ["payment_id"]
    )

    op.create_table(
        "payment_audit_log",
        sa.Column("id", GUID, primary_key=True),
        sa.Column("payment_id", GUID, nullable=False),
        sa.Column("action", sa.String(length=7), nullable=False),
        sa.Column(
            "performed_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column("performed_by", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("snapshot", sa.JSON(), nullable=True),
    )
    op.create_index("ix_payment_audit_log_payment_id", "payment_audit_log", ["payment_id"])

    op.create_table(
        "aggregation_snapshots",
        sa.Column("snapshot_id", GUID, primary_key=True),
        sa.Column(
            "client_id",
            GUID,
            sa.ForeignKey("clients.client_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("module", sa.String(length=5), nullable=False),
        sa.Column("fiscal_year", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=5), nullable=False),
        sa.Column("stale_reason", sa.Text(), nullable=True),
        sa.Column(
            "generated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint(
            "client_id", "module", "fiscal_year", name="aggregation_snapshots_unique_scope"
        ),
    )
    op.create_index("ix_aggregation_snapshots_client_id", "aggregation_snapshots", ["client_id"])

    op.create_table(
        "aggregation_snapshot_entries",
        sa.Column("entry_id", GUID, primary_key=True),
        sa.Column(
            "snapshot_id",
            GUID,
            sa.ForeignKey("aggregation_snapshots.snapshot_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "unit_id",
            GUID,
            sa.ForeignKey("units.unit_id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("unit_code", sa.String(length=40), nullable=False),
        sa.Column("period_index", sa.Integer(), nullable=False),
        sa.Column("period_key", sa.String(length=7), nullable=False),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("base_amount_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("penalty_amount_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("paid_amount_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("total_due_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("past_due_carryover_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("total_to_clear_cents", CENTS, nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=7), nullable=False),
        sa.Column("last_payment_id", GUID, nullable=True),
        sa.UniqueConstraint(
            "snapshot_id",
            "unit_id",
            "period_index",
            name="aggregation_snapshot_entries_unique_unit_period",
        ),
    )
    op.create_index(
        "ix_aggregation_snapshot_entries_snapshot_id",
        "aggregation_snapshot_entries",
        ["snapshot_id"],
    )
    op.create_index(
        "ix_aggregation_snapshot_entries_unit_id",
        "aggregation_snapshot_entries",
        ["unit_id"],
    )

    op.create_table(
        "operational_metric_events",
        sa.Column("event_id", GUID, primary_key=True),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("outcome", sa.String(length=32), nullable=False),
        sa.Column("duration_ms", sa.Numeric(14, 3), nullable=True),
        sa.Column("labels", sa.JSON(), nullable=False, server_default=sa.text("'{}'")),
        sa.Column("details", sa.JSON(), nullable=True),
        _created_at(),
    )
    op.create_index(
        "ix_operational_metric_events_event_type",
        "operational_metric_events",
        ["event_type"],
    )
    op.create_index(
        "ix_operational_metric_events_outcome",
        "operational_metric_events",
        ["outcome"],
    )
    op.create_index(
        "ix_operational_metric_events_created_at",
        "operational_metric_events",
        ["created_at"],
    )


def downgrade() -> None:
    for table_name in (
        "operational_metric_events",
        "aggregation_snapshot_entries",
        "aggregation_snapshots",
        "payment_audit_log",
        "credit_balance_entries",
        "payment_allocations",
        "payments",
        "charges",
        "units",
        "billing_configs",
        "clients",
    ):
        op.drop_table(table_name)
