"""
Collaborator tables owned by the rest of the product.
This core only reads them, so they carry just the columns it needs.
"""

from sqlalchemy import Boolean, Column, Integer, String

from app.db.base import Base, IdMixin, TimestampMixin


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True)
    booking_url = Column(String(2048), nullable=True)
    allow_booking = Column(Boolean, nullable=False, default=False)


class Content(Base, IdMixin, TimestampMixin):
    """A creator post. May override the booking destination or carry a product."""

    __tablename__ = "contents"

    creator_id = Column(String(36), nullable=False, index=True)
    title = Column(String(255), nullable=True)
    booking_url = Column(String(2048), nullable=True)
    product_id = Column(String(36), nullable=True)


class Product(Base, IdMixin, TimestampMixin):
    __tablename__ = "products"

    title = Column(String(255), nullable=True)
    amount_cents = Column(Integer, nullable=False, default=0)
    currency = Column(String(3), nullable=True)


class LegacyCloser(Base, IdMixin, TimestampMixin):
    """Pre-migration per-creator destinations. Never written by this service."""

    __tablename__ = "closers"

    creator_id = Column(String(36), nullable=False, index=True)
    destination_url = Column(String(2048), nullable=False)
    weight = Column(Integer, nullable=False, default=1)
    active = Column(Boolean, nullable=False, default=True)
