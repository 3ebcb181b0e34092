"""
Booking targets ("closers"), per-creator routing config and the allocation
event log the round-robin sampler reads.

Key design decisions:
- Unique (creator_id, destination_url) so adding a URL twice updates in place
- uses_count is only ever bumped by a server-side increment
- routing_configs.version is the optimistic-lock counter for pick-and-bump
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)

from app.db.base import Base, IdMixin, TimestampMixin, utcnow

ROUTING_MODES = ("single", "round_robin", "weighted", "sticky")


class BookingTarget(Base, IdMixin, TimestampMixin):
    __tablename__ = "booking_targets"

    creator_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    destination_url = Column(String(2048), nullable=False)
    weight = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
    uses_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("creator_id", "destination_url", name="uq_booking_target_creator_url"),
        CheckConstraint("weight >= 0", name="check_booking_target_weight_non_negative"),
        CheckConstraint("uses_count >= 0", name="check_booking_target_uses_non_negative"),
        Index("ix_booking_targets_creator_active", "creator_id", "active"),
    )

    def __repr__(self) -> str:
        return f"<BookingTarget(id={self.id}, creator={self.creator_id}, weight={self.weight}, active={self.active})>"


class RoutingConfig(Base, TimestampMixin):
    __tablename__ = "routing_configs"

    creator_id = Column(String(36), primary_key=True)
    mode = Column(String(20), nullable=False, default="single")
    default_target_id = Column(
        String(36), ForeignKey("booking_targets.id", ondelete="SET NULL"), nullable=True
    )
    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint(
            "mode IN ('single', 'round_robin', 'weighted', 'sticky')",
            name="check_routing_mode",
        ),
    )

    def __repr__(self) -> str:
        return f"<RoutingConfig(creator={self.creator_id}, mode={self.mode}, version={self.version})>"


class AllocationEvent(Base):
    """One row per successful pick; the newest N per creator feed round-robin."""

    __tablename__ = "booking_clicks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    creator_id = Column(String(36), nullable=False)
    target_id = Column(String(36), nullable=True)
    viewer_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        # Sampling query: WHERE creator_id = ? ORDER BY created_at DESC LIMIT N
        Index("ix_booking_clicks_creator_created", "creator_id", "created_at"),
    )
