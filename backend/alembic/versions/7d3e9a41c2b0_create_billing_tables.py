"""create billing tables

Revision ID: 7d3e9a41c2b0
Revises:
Create Date: 2026-10-18 09:12:40.118204
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "7d3e9a41c2b0"
down_revision = None
branch_labels = None
depends_on = None


def _base_columns():
    return [
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("modified_at", sa.DateTime(), nullable=False),
    ]


def _organization_fk(table: str) -> sa.ForeignKeyConstraint:
    return sa.ForeignKeyConstraint(
        ["organization_id"],
        ["organization.id"],
        name=op.f(f"{table}_organization_id_fkey"),
        ondelete="CASCADE",
    )


def upgrade():
    op.create_table(
        "organization",
        *_base_columns(),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("external_id", sa.String(), nullable=True),
        sa.Column("billing_email", sa.String(), nullable=True),
        sa.Column("is_personal", sa.Boolean(), nullable=False),
        sa.Column("member_count", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("id", name=op.f("organization_pkey")),
        sa.UniqueConstraint("external_id", name=op.f("uq_organization_external_id")),
    )

    op.create_table(
        "billing_customer",
        *_base_columns(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("stripe_customer_id", sa.String(), nullable=False),
        _organization_fk("billing_customer"),
        sa.PrimaryKeyConstraint("id", name=op.f("billing_customer_pkey")),
        sa.UniqueConstraint(
            "organization_id", name=op.f("uq_billing_customer_organization_id")
        ),
        sa.UniqueConstraint(
            "stripe_customer_id", name=op.f("uq_billing_customer_stripe_customer_id")
        ),
    )

    op.create_table(
        "subscription_snapshot",
        *_base_columns(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("stripe_customer_id", sa.String(), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(), nullable=True),
        sa.Column("stripe_price_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("tier", sa.String(length=32), nullable=False),
        sa.Column("billing_interval", sa.String(length=16), nullable=False),
        sa.Column("seat_limit", sa.Integer(), nullable=False),
        sa.Column("subscription_created_at", sa.BigInteger(), nullable=True),
        sa.Column("current_period_start", sa.BigInteger(), nullable=True),
        sa.Column("current_period_end", sa.BigInteger(), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False),
        sa.Column("cancel_at", sa.BigInteger(), nullable=True),
        sa.Column("trial_start", sa.BigInteger(), nullable=True),
        sa.Column("trial_end", sa.BigInteger(), nullable=True),
        sa.Column("payment_method_brand", sa.String(length=32), nullable=True),
        sa.Column("payment_method_last4", sa.String(length=4), nullable=True),
        sa.Column("scheduled_price_id", sa.String(), nullable=True),
        sa.Column("schedule_id", sa.String(), nullable=True),
        sa.Column("pending_checkout_session_id", sa.String(), nullable=True),
        sa.Column("pending_price_id", sa.String(), nullable=True),
        _organization_fk("subscription_snapshot"),
        sa.PrimaryKeyConstraint("id", name=op.f("subscription_snapshot_pkey")),
    )
    for column in ("organization_id", "stripe_customer_id", "stripe_subscription_id"):
        op.create_index(
            op.f(f"ix_subscription_snapshot_{column}"),
            "subscription_snapshot",
            [column],
            unique=False,
        )

    op.create_table(
        "trial_usage",
        *_base_columns(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("has_used_trial", sa.Boolean(), nullable=False),
        sa.Column("trial_started_at", sa.BigInteger(), nullable=True),
        sa.Column("trial_ends_at", sa.BigInteger(), nullable=True),
        _organization_fk("trial_usage"),
        sa.PrimaryKeyConstraint("id", name=op.f("trial_usage_pkey")),
        sa.UniqueConstraint("organization_id", name=op.f("uq_trial_usage_organization_id")),
    )

    op.create_table(
        "billing_audit_event",
        *_base_columns(),
        sa.Column("organization_id", sa.Uuid(), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("previous_tier", sa.String(length=32), nullable=True),
        sa.Column("previous_interval", sa.String(length=16), nullable=True),
        sa.Column("new_tier", sa.String(length=32), nullable=True),
        sa.Column("new_interval", sa.String(length=16), nullable=True),
        sa.Column("was_trialing", sa.Boolean(), nullable=False),
        sa.Column("effective", sa.String(length=16), nullable=False),
        sa.Column("effective_at", sa.BigInteger(), nullable=True),
        sa.Column("details", sa.JSON(), nullable=True),
        _organization_fk("billing_audit_event"),
        sa.PrimaryKeyConstraint("id", name=op.f("billing_audit_event_pkey")),
    )
    op.create_index(
        op.f("ix_billing_audit_event_organization_id"),
        "billing_audit_event",
        ["organization_id"],
        unique=False,
    )

    # Processed webhook deliveries, keyed by Stripe event id
    op.create_table(
        "stripe_webhook_event",
        *_base_columns(),
        sa.Column("event_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(length=64), nullable=False),
        sa.Column("stripe_customer_id", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("stripe_webhook_event_pkey")),
        sa.UniqueConstraint("event_id", name=op.f("uq_stripe_webhook_event_event_id")),
    )


def downgrade():
    op.drop_table("stripe_webhook_event")
    op.drop_index(
        op.f("ix_billing_audit_event_organization_id"), table_name="billing_audit_event"
    )
    op.drop_table("billing_audit_event")
    op.drop_table("trial_usage")
    for column in ("stripe_subscription_id", "stripe_customer_id", "organization_id"):
        op.drop_index(
            op.f(f"ix_subscription_snapshot_{column}"), table_name="subscription_snapshot"
        )
    op.drop_table("subscription_snapshot")
    op.drop_table("billing_customer")
    op.drop_table("organization")
