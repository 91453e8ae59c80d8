"""initial ledger schema

Revision ID: 3c1f0a9d2b71
Revises:
Create Date: 2026-10-19 09:12:04.118233

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f0a9d2b71'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("full_name", sa.String(), nullable=False),
        sa.Column("api_token_hash", sa.String(64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("api_token_hash", name="uq_users_api_token_hash"),
    )

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("reference", sa.String(128), nullable=False),
        sa.Column("sponsor_id", sa.Integer()),
        sa.Column("user_id", sa.Integer()),
        sa.Column("plan_id", sa.String(64)),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("payment_date", sa.DateTime(timezone=True)),
        sa.Column("transaction_id", sa.String(128)),
        sa.Column("payment_status", sa.String(16), nullable=False),
        sa.Column("payment_method", sa.String(32), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("reference", name="uq_payments_reference"),
        sa.CheckConstraint("amount >= 0", name="ck_payments_amount_ge_0"),
        sa.CheckConstraint(
            "payment_status in ('PENDING','APPROVED','DECLINED','VOIDED','ERROR')",
            name="ck_payments_status"),
    )
    op.create_index("idx_payments_sponsor", "payments", ["sponsor_id"])

    op.create_table(
        "donations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_id", sa.String(128), sa.ForeignKey(
            "payments.reference", ondelete="RESTRICT"), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("camper_id", sa.Integer()),
        sa.Column("sponsor_id", sa.Integer()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("payment_id", name="uq_donations_payment_id"),
    )

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("payment_id", sa.String(128), sa.ForeignKey(
            "payments.reference", ondelete="RESTRICT"), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.String(64)),
        sa.Column("frequency", sa.String(32)),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("payment_source_id", sa.Text()),
        sa.Column("payment_source_type", sa.String(32)),
        sa.Column("customer_email", sa.String(254)),
        sa.Column("activated_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("user_id", name="uq_subscriptions_user"),
        sa.CheckConstraint("status in ('pending','active','canceled')",
                           name="ck_subscriptions_status"),
    )
    op.create_index("idx_subscriptions_payment", "subscriptions", ["payment_id"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("idempotency_key", sa.String(300), nullable=False),
        sa.Column("reference", sa.String(128), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("outcome", sa.String(16), nullable=False),
        sa.Column("raw", sa.Text(), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_webhook_events_key"),
        sa.CheckConstraint("outcome in ('processed','noop')",
                           name="ck_webhook_events_outcome"),
    )
    op.create_index("idx_webhook_events_reference", "webhook_events", ["reference"])

    op.create_table(
        "course_registrations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("lastname", sa.String(), nullable=False),
        sa.Column("email", sa.String(254), nullable=False),
        sa.Column("phone", sa.String(32), nullable=False),
        sa.Column("document", sa.String(32), nullable=False),
        sa.Column("payment_reference", sa.String(128), nullable=False),
        sa.Column("selected_course", sa.String(), nullable=False),
        sa.Column("course_date", sa.String(10)),
        sa.Column("num_seats", sa.Integer(), nullable=False),
        sa.Column("payment_date", sa.DateTime(timezone=True)),
        sa.Column("confirmed", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("num_seats >= 1", name="ck_registrations_seats_ge_1"),
    )
    op.create_index("idx_registrations_reference",
                    "course_registrations", ["payment_reference"])


def downgrade():
    op.drop_index("idx_registrations_reference", table_name="course_registrations")
    op.drop_table("course_registrations")
    op.drop_index("idx_webhook_events_reference", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("idx_subscriptions_payment", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("donations")
    op.drop_index("idx_payments_sponsor", table_name="payments")
    op.drop_table("payments")
    op.drop_table("users")
