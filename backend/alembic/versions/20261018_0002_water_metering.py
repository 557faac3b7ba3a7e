"""Add water metering rates and meter readings on charges"""

from __future__ import annotations

from typing import Sequence

import sqlalchemy as sa
from alembic import op

revision = "20261018_0002"
down_revision = "20261018_0001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    with op.batch_alter_table("billing_configs") as batch_op:
        batch_op.add_column(
            sa.Column("rate_per_m3_cents", sa.BigInteger(), nullable=False, server_default="0")
        )
        batch_op.add_column(
            sa.Column("minimum_charge_cents", sa.BigInteger(), nullable=False, server_default="0")
        )
        batch_op.create_check_constraint(
            "ck_billing_configs_rate_per_m3", "rate_per_m3_cents >= 0"
        )
        batch_op.create_check_constraint(
            "ck_billing_configs_minimum_charge", "minimum_charge_cents >= 0"
        )

    with op.batch_alter_table("charges") as batch_op:
        batch_op.add_column(sa.Column("prior_reading", sa.Integer(), nullable=True))
        batch_op.add_column(sa.Column("current_reading", sa.Integer(), nullable=True))
        batch_op.create_check_constraint(
            "ck_charges_reading_order",
            "current_reading IS NULL OR prior_reading IS NULL OR current_reading >= prior_reading",
        )


def downgrade() -> None:
    with op.batch_alter_table("charges") as batch_op:
        batch_op.drop_constraint("ck_charges_reading_order", type_="check")
        batch_op.drop_column("current_reading")
        batch_op.drop_column("prior_reading")

    with op.batch_alter_table("billing_configs") as batch_op:
        batch_op.drop_constraint("ck_billing_configs_minimum_charge", type_="check")
        batch_op.drop_constraint("ck_billing_configs_rate_per_m3", type_="check")
        batch_op.drop_column("minimum_charge_cents")
        batch_op.drop_column("rate_per_m3_cents")
