"""
Bookings (zero-amount reservations) and the payment-link records a creator
issues against them.

Key design decisions:
- linked_payment_id is written with a conditional UPDATE so it is set once
- external_session_id is unique so replayed setup-mode sessions insert once
- booking_payments rows are deleted with their booking
"""

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
)

from app.db.base import Base, IdMixin, TimestampMixin

PLAN_TYPES = ("full", "installment")


class Booking(Base, IdMixin, TimestampMixin):
    __tablename__ = "bookings"

    content_id = Column(String(36), nullable=True, index=True)
    buyer_id = Column(String(36), nullable=False)
    creator_id = Column(String(36), nullable=False)
    status = Column(String(20), nullable=False, default="booked")  # booked, completed
    linked_payment_id = Column(String(36), nullable=True)
    external_session_id = Column(String(255), nullable=True, unique=True)

    __table_args__ = (
        CheckConstraint("status IN ('booked', 'completed')", name="check_booking_status"),
        # Linkage lookup: buyer + creator, unlinked, newest first
        Index("ix_bookings_buyer_creator_created", "buyer_id", "creator_id", "created_at"),
        Index("ix_bookings_creator_created", "creator_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, buyer={self.buyer_id}, creator={self.creator_id}, status={self.status})>"


class BookingPayment(Base, IdMixin, TimestampMixin):
    __tablename__ = "booking_payments"

    booking_id = Column(
        String(36), ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    product_id = Column(String(36), nullable=True)
    closer_user_id = Column(String(36), nullable=True)
    buyer_id = Column(String(36), nullable=True)
    plan_type = Column(String(20), nullable=False)
    installment_months = Column(Integer, nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # pending, link_sent, paid, failed
    amount_total_cents = Column(Integer, nullable=False)
    installment_amount_cents = Column(Integer, nullable=True)
    platform_fee_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    external_session_id = Column(String(255), nullable=True, index=True)
    external_transaction_id = Column(String(255), nullable=True)
    external_subscription_id = Column(String(255), nullable=True)
    link_url = Column(String(2048), nullable=True)
    link_sent_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("plan_type IN ('full', 'installment')", name="check_booking_payment_plan"),
        CheckConstraint(
            "status IN ('pending', 'link_sent', 'paid', 'failed')",
            name="check_booking_payment_status",
        ),
        CheckConstraint(
            "installment_months IS NULL OR (installment_months BETWEEN 2 AND 24)",
            name="check_booking_payment_months",
        ),
        CheckConstraint("amount_total_cents >= 0", name="check_booking_payment_amount"),
    )

    def __repr__(self) -> str:
        return f"<BookingPayment(id={self.id}, booking={self.booking_id}, plan={self.plan_type}, status={self.status})>"
