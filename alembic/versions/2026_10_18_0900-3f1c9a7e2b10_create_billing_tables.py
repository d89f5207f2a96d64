"""create_billing_tables

Revision ID: 3f1c9a7e2b10
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "3f1c9a7e2b10"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_PERIOD_WHERE = "status IN ('completed', 'pending', 'processing')"


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # Mirrors of tables owned by the portal; created here for standalone deployments
    op.create_table(
        "tenants",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("property_id", sa.String(36), nullable=False),
        sa.Column("unit_number", sa.String(50), nullable=True),
        sa.Column("rent_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
    )
    op.create_index("ix_tenants_user_id", "tenants", ["user_id"])

    op.create_table(
        "payment_methods",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("processor_payment_method_id", sa.String(255), nullable=False),
        sa.Column("processor_customer_id", sa.String(255), nullable=False),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last4", sa.String(4), nullable=True),
        sa.Column("bank_name", sa.String(255), nullable=True),
        sa.Column("card_brand", sa.String(50), nullable=True),
        sa.Column("exp_month", sa.Integer(), nullable=True),
        sa.Column("exp_year", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("ix_payment_methods_user_id", "payment_methods", ["user_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False),
        sa.Column("property_id", sa.String(36), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payment_type", sa.String(20), nullable=False),
        sa.Column("payment_method", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("period_start", sa.Date(), nullable=True),
        sa.Column("period_end", sa.Date(), nullable=True),
        sa.Column("due_date", sa.Date(), nullable=False),
        sa.Column("processor_intent_id", sa.String(255), nullable=True),
        sa.Column("processor_charge_id", sa.String(255), nullable=True),
        sa.Column("processor_fee_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("is_autopay", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("recorded_by", sa.String(36), nullable=True),
        sa.Column("payment_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )
    op.create_index("ix_payments_tenant_id", "payments", ["tenant_id"])
    op.create_index("ix_payments_processor_intent_id", "payments", ["processor_intent_id"])
    op.create_index("ix_payments_processor_charge_id", "payments", ["processor_charge_id"])
    op.create_index("ix_payments_tenant_created", "payments", ["tenant_id", "created_at"])

    # At most one live payment per tenant and billing period
    op.create_index(
        "uq_payments_tenant_period_active",
        "payments",
        ["tenant_id", "period_start", "period_end"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_PERIOD_WHERE),
        sqlite_where=sa.text(ACTIVE_PERIOD_WHERE),
    )

    op.create_table(
        "autopay_enrollments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("tenant_id", sa.String(36), nullable=False, unique=True),
        sa.Column("payment_method_id", sa.String(36), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("discount_amount", sa.Numeric(12, 2), nullable=False, server_default="0.00"),
        sa.Column("enrolled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("discount_amount >= 0", name="ck_autopay_discount_non_negative"),
    )


def downgrade() -> None:
    op.drop_table("autopay_enrollments")
    op.drop_index("uq_payments_tenant_period_active", table_name="payments")
    op.drop_index("ix_payments_tenant_created", table_name="payments")
    op.drop_index("ix_payments_processor_charge_id", table_name="payments")
    op.drop_index("ix_payments_processor_intent_id", table_name="payments")
    op.drop_index("ix_payments_tenant_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_payment_methods_user_id", table_name="payment_methods")
    op.drop_table("payment_methods")
    op.drop_index("ix_tenants_user_id", table_name="tenants")
    op.drop_table("tenants")
