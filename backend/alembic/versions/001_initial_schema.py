"""Initial schema: booking targets, routing, allocation log, bookings, payments, purchases.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Collaborator tables (read-only for this service)
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("booking_url", sa.String(2048), nullable=True),
        sa.Column("allow_booking", sa.Boolean(), nullable=False, server_default=sa.text("false")),
    )

    op.create_table(
        "products",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_products_created_at", "products", ["created_at"])

    op.create_table(
        "contents",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("creator_id", sa.String(36), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("booking_url", sa.String(2048), nullable=True),
        sa.Column("product_id", sa.String(36), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_contents_creator_id", "contents", ["creator_id"])
    op.create_index("ix_contents_created_at", "contents", ["created_at"])

    op.create_table(
        "closers",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("creator_id", sa.String(36), nullable=False),
        sa.Column("destination_url", sa.String(2048), nullable=False),
        sa.Column("weight", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_closers_creator_id", "closers", ["creator_id"])
    op.create_index("ix_closers_created_at", "closers", ["created_at"])

    # Booking targets
    op.create_table(
        "booking_targets",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("creator_id", sa.String(36), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("destination_url", sa.String(2048), nullable=False),
        sa.Column("weight", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("uses_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("creator_id", "destination_url", name="uq_booking_target_creator_url"),
        sa.CheckConstraint("weight >= 0", name="check_booking_target_weight_non_negative"),
        sa.CheckConstraint("uses_count >= 0", name="check_booking_target_uses_non_negative"),
    )
    op.create_index("ix_booking_targets_creator_id", "booking_targets", ["creator_id"])
    op.create_index("ix_booking_targets_created_at", "booking_targets", ["created_at"])
    # Pick-and-bump loads WHERE creator_id = ? AND active on every click
    op.create_index("ix_booking_targets_creator_active", "booking_targets", ["creator_id", "active"])

    # Routing config; version is the optimistic-lock counter for pick-and-bump
    op.create_table(
        "routing_configs",
        sa.Column("creator_id", sa.String(36), primary_key=True),
        sa.Column("mode", sa.String(20), nullable=False, server_default=sa.text("'single'")),
        sa.Column(
            "default_target_id",
            sa.String(36),
            sa.ForeignKey("booking_targets.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint(
            "mode IN ('single', 'round_robin', 'weighted', 'sticky')",
            name="check_routing_mode",
        ),
    )
    op.create_index("ix_routing_configs_created_at", "routing_configs", ["created_at"])

    # Allocation log. Round-robin reads the newest N rows per creator.
    op.create_table(
        "booking_clicks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("creator_id", sa.String(36), nullable=False),
        sa.Column("target_id", sa.String(36), nullable=True),
        sa.Column("viewer_id", sa.String(36), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_booking_clicks_creator_created", "booking_clicks", ["creator_id", "created_at"])

    # Bookings
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("content_id", sa.String(36), nullable=True),
        sa.Column("buyer_id", sa.String(36), nullable=False),
        sa.Column("creator_id", sa.String(36), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'booked'")),
        sa.Column("linked_payment_id", sa.String(36), nullable=True),
        sa.Column("external_session_id", sa.String(255), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("external_session_id", name="uq_bookings_external_session_id"),
        sa.CheckConstraint("status IN ('booked', 'completed')", name="check_booking_status"),
    )
    op.create_index("ix_bookings_content_id", "bookings", ["content_id"])
    op.create_index("ix_bookings_created_at", "bookings", ["created_at"])
    # Linkage: buyer + creator, newest first
    op.create_index("ix_bookings_buyer_creator_created", "bookings", ["buyer_id", "creator_id", "created_at"])
    # Creator dashboard list
    op.create_index("ix_bookings_creator_created", "bookings", ["creator_id", "created_at"])

    op.create_table(
        "booking_payments",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "booking_id",
            sa.String(36),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("product_id", sa.String(36), nullable=True),
        sa.Column("closer_user_id", sa.String(36), nullable=True),
        sa.Column("buyer_id", sa.String(36), nullable=True),
        sa.Column("plan_type", sa.String(20), nullable=False),
        sa.Column("installment_months", sa.Integer(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("amount_total_cents", sa.Integer(), nullable=False),
        sa.Column("installment_amount_cents", sa.Integer(), nullable=True),
        sa.Column("platform_fee_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'usd'")),
        sa.Column("external_session_id", sa.String(255), nullable=True),
        sa.Column("external_transaction_id", sa.String(255), nullable=True),
        sa.Column("external_subscription_id", sa.String(255), nullable=True),
        sa.Column("link_url", sa.String(2048), nullable=True),
        sa.Column("link_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("plan_type IN ('full', 'installment')", name="check_booking_payment_plan"),
        sa.CheckConstraint(
            "status IN ('pending', 'link_sent', 'paid', 'failed')",
            name="check_booking_payment_status",
        ),
        sa.CheckConstraint(
            "installment_months IS NULL OR (installment_months BETWEEN 2 AND 24)",
            name="check_booking_payment_months",
        ),
        sa.CheckConstraint("amount_total_cents >= 0", name="check_booking_payment_amount"),
    )
    op.create_index("ix_booking_payments_booking_id", "booking_payments", ["booking_id"])
    op.create_index("ix_booking_payments_external_session_id", "booking_payments", ["external_session_id"])
    op.create_index("ix_booking_payments_created_at", "booking_payments", ["created_at"])

    # Purchases. Both processor ids are unique so duplicate deliveries
    # collapse on INSERT ... ON CONFLICT DO NOTHING.
    op.create_table(
        "purchases",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("buyer_id", sa.String(36), nullable=True),
        sa.Column("creator_id", sa.String(36), nullable=True),
        sa.Column("content_id", sa.String(36), nullable=True),
        sa.Column("external_session_id", sa.String(255), nullable=False),
        sa.Column("external_transaction_id", sa.String(255), nullable=True),
        sa.Column("external_subscription_id", sa.String(255), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'usd'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("booking_id", sa.String(36), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("external_session_id", name="uq_purchases_external_session_id"),
        sa.UniqueConstraint("external_transaction_id", name="uq_purchases_external_transaction_id"),
        sa.CheckConstraint(
            "status IN ('pending', 'paid', 'refunded', 'expired')",
            name="check_purchase_status",
        ),
    )
    op.create_index("ix_purchases_buyer_id", "purchases", ["buyer_id"])
    op.create_index("ix_purchases_creator_id", "purchases", ["creator_id"])
    op.create_index("ix_purchases_external_subscription_id", "purchases", ["external_subscription_id"])
    op.create_index("ix_purchases_created_at", "purchases", ["created_at"])


def downgrade() -> None:
    op.drop_table("purchases")
    op.drop_table("booking_payments")
    op.drop_table("bookings")
    op.drop_table("booking_clicks")
    op.drop_table("routing_configs")
    op.drop_table("booking_targets")
    op.drop_table("closers")
    op.drop_table("contents")
    op.drop_table("products")
    op.drop_table("profiles")
