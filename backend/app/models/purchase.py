"""
Purchases reconciled from payment processor events.

Key design decisions:
- external_session_id and external_transaction_id are each unique, so
  concurrent deliveries of the same event collapse on INSERT ... ON CONFLICT
- booking_id is the optional reverse reference written by linkage
"""

from sqlalchemy import CheckConstraint, Column, Integer, String

from app.db.base import Base, IdMixin, TimestampMixin

PURCHASE_STATUSES = ("pending", "paid", "refunded", "expired")


class Purchase(Base, IdMixin, TimestampMixin):
    __tablename__ = "purchases"

    buyer_id = Column(String(36), nullable=True, index=True)
    creator_id = Column(String(36), nullable=True, index=True)
    content_id = Column(String(36), nullable=True)
    external_session_id = Column(String(255), nullable=False, unique=True)
    external_transaction_id = Column(String(255), nullable=True, unique=True)
    external_subscription_id = Column(String(255), nullable=True, index=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="usd")
    status = Column(String(20), nullable=False, default="pending")
    booking_id = Column(String(36), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'paid', 'refunded', 'expired')",
            name="check_purchase_status",
        ),
    )

    def __repr__(self) -> str:
        return f"<Purchase(id={self.id}, session={self.external_session_id}, status={self.status})>"
