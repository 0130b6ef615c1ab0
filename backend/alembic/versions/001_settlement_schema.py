# backend/alembic/versions/001_settlement_schema.py
"""Settlement schema - properties, bookings, payments, webhooks, revenue, outbox

Revision ID: 001_settlement_schema
Revises:
Create Date: 2026-10-18 00:00:00.000000

The no-overlap guarantee for active bookings lives in the database: an
EXCLUDE constraint over (property_id, tstzrange(start_at, end_at, '[)'))
restricted to PENDING and CONFIRMED rows. It needs btree_gist.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_settlement_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Create settlement tables and the booking overlap exclusion constraint."""
    print("Creating settlement schema...")
    op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")

    op.create_table(
        "properties",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("host_id", sa.String(26), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("address", sa.Text(), nullable=True),
        sa.Column("hourly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("daily_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("weekly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("monthly_rate", sa.Numeric(10, 2), nullable=True),
        sa.Column("service_fee_percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("require_approval", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("min_booking_hours", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_booking_days", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
    )
    op.create_index("ix_properties_host_id", "properties", ["host_id"])

    op.create_table(
        "host_payout_accounts",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("host_id", sa.String(26), nullable=False, unique=True),
        sa.Column("stripe_account_id", sa.String(255), nullable=False, unique=True),
        sa.Column("payouts_ready", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("property_id", sa.String(26), sa.ForeignKey("properties.id"), nullable=False),
        sa.Column("renter_id", sa.String(26), nullable=False),
        sa.Column("host_id", sa.String(26), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_hours", sa.Numeric(10, 2), nullable=False),
        sa.Column("base_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("service_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("host_fee", sa.Numeric(10, 2), nullable=False),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="cad"),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column(
            "payment_intent_id",
            sa.String(255),
            nullable=True,
            unique=True,
            comment="Current Stripe payment intent",
        ),
        sa.Column("intent_generation", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("vehicle_info", sa.Text(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by_id", sa.String(26), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("reminder_renter_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminder_host_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_request_renter_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_request_host_sent_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_at > start_at", name="ck_bookings_window_positive"),
    )
    op.create_index("ix_bookings_renter_id", "bookings", ["renter_id"])
    op.create_index("ix_bookings_host_id", "bookings", ["host_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_property_window", "bookings", ["property_id", "start_at", "end_at"])
    op.create_index("ix_bookings_status_start", "bookings", ["status", "start_at"])
    op.execute(
        """
        ALTER TABLE bookings
        ADD CONSTRAINT bookings_no_overlap_per_property
        EXCLUDE USING gist (
            property_id WITH =,
            tstzrange(start_at, end_at, '[)') WITH &&
        )
        WHERE (status IN ('PENDING', 'CONFIRMED'))
        """
    )

    op.create_table(
        "payment_records",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("booking_id", sa.String(26), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(255), nullable=False, unique=True),
        sa.Column("stripe_charge_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("stripe_refund_id", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_payment_records_booking_id", "payment_records", ["booking_id"])
    op.create_index("ix_payment_records_stripe_charge_id", "payment_records", ["stripe_charge_id"])

    op.create_table(
        "charge_refund_states",
        sa.Column("stripe_charge_id", sa.String(255), primary_key=True),
        sa.Column("amount_refunded_cents", sa.BigInteger(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="received"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("related_entity_type", sa.String(50), nullable=True),
        sa.Column("related_entity_id", sa.String(26), nullable=True),
        sa.Column(
            "received_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
    )
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_received_at", "webhook_events", ["received_at"])

    op.create_table(
        "revenue_ledger_entries",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("event_id", sa.String(255), nullable=False, unique=True),
        sa.Column("stripe_charge_id", sa.String(255), nullable=True),
        sa.Column("entry_type", sa.String(20), nullable=False),
        sa.Column("amount_delta_cents", sa.BigInteger(), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        *_timestamps(),
    )
    op.create_index(
        "ix_revenue_ledger_entries_stripe_charge_id", "revenue_ledger_entries", ["stripe_charge_id"]
    )

    op.create_table(
        "tax_config",
        sa.Column("id", sa.String(20), primary_key=True),
        sa.Column("tax_mode", sa.String(10), nullable=False, server_default="off"),
        sa.Column("revenue_cents", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("threshold_cents", sa.BigInteger(), nullable=False),
        sa.Column("tax_effective_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("revenue_last_synced_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )

    op.create_table(
        "event_outbox",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("aggregate_id", sa.String(64), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_event_outbox_idempotency_key"),
    )
    op.create_index("ix_event_outbox_event_type", "event_outbox", ["event_type"])
    op.create_index("ix_event_outbox_aggregate_id", "event_outbox", ["aggregate_id"])
    op.create_index("ix_event_outbox_status", "event_outbox", ["status"])
    op.create_index("ix_event_outbox_next_attempt_at", "event_outbox", ["next_attempt_at"])

    op.create_table(
        "notification_delivery",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("idempotency_key", sa.String(255), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("idempotency_key", name="uq_notification_delivery_idempotency"),
    )
    op.create_index("ix_notification_delivery_event_type", "notification_delivery", ["event_type"])

    print("Settlement schema created")


def downgrade() -> None:
    """Drop settlement tables."""
    for table in (
        "notification_delivery",
        "event_outbox",
        "tax_config",
        "revenue_ledger_entries",
        "webhook_events",
        "charge_refund_states",
        "payment_records",
        "bookings",
        "host_payout_accounts",
        "properties",
    ):
        op.drop_table(table)
