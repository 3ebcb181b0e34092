"""
Booking ledger: buyer reservations and the creator's view of them.

Reservations are zero-amount bookings. Seeding one is idempotent per
(content, buyer): a second click on "book" while the first reservation is
still open returns the same row instead of creating another.
"""

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import ForbiddenError, NotFound
from app.core.logging import get_logger
from app.models.booking import Booking, BookingPayment
from app.models.catalog import Content

logger = get_logger(__name__)

CREATOR_LIST_LIMIT = 100


async def seed_booking(db: AsyncSession, buyer_id: str, content_id: str) -> tuple[Booking, bool]:
    """
    Reserve a call on a content item.

    Returns:
        (booking, created) where created is False for an existing open booking
    """
    content = (
        await db.execute(select(Content).where(Content.id == content_id))
    ).scalar_one_or_none()
    if not content:
        raise NotFound("Post not found")

    existing = (
        await db.execute(
            select(Booking)
            .where(
                Booking.content_id == content_id,
                Booking.buyer_id == buyer_id,
                Booking.status == "booked",
            )
            .order_by(Booking.created_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if existing:
        logger.info("booking_seed_existing", booking_id=existing.id, buyer_id=buyer_id, content_id=content_id)
        return existing, False

    booking = Booking(
        content_id=content_id,
        buyer_id=buyer_id,
        creator_id=content.creator_id,
        status="booked",
    )
    db.add(booking)
    await db.flush()
    await db.refresh(booking)

    logger.info(
        "booking_seeded",
        booking_id=booking.id,
        buyer_id=buyer_id,
        creator_id=content.creator_id,
        content_id=content_id,
    )
    return booking, True


async def list_creator_bookings(
    db: AsyncSession,
    creator_id: str,
) -> list[tuple[Booking, list[BookingPayment]]]:
    """Newest bookings for a creator, each with its payment-link records."""
    bookings = list(
        (
            await db.execute(
                select(Booking)
                .where(Booking.creator_id == creator_id)
                .order_by(Booking.created_at.desc(), Booking.id.desc())
                .limit(CREATOR_LIST_LIMIT)
            )
        ).scalars().all()
    )
    if not bookings:
        return []

    payments = (
        await db.execute(
            select(BookingPayment)
            .where(BookingPayment.booking_id.in_([b.id for b in bookings]))
            .order_by(BookingPayment.created_at.desc())
        )
    ).scalars().all()

    by_booking: dict[str, list[BookingPayment]] = {b.id: [] for b in bookings}
    for payment in payments:
        by_booking[payment.booking_id].append(payment)
    return [(b, by_booking[b.id]) for b in bookings]


async def delete_booking(db: AsyncSession, booking_id: str, creator_id: str) -> None:
    """Creator-only. Payment-link records go first, then the booking."""
    booking = (
        await db.execute(select(Booking).where(Booking.id == booking_id))
    ).scalar_one_or_none()
    if not booking:
        raise NotFound("Booking not found")
    if booking.creator_id != creator_id:
        raise ForbiddenError("Only the creator can delete this booking")

    removed = await db.execute(delete(BookingPayment).where(BookingPayment.booking_id == booking_id))
    await db.execute(delete(Booking).where(Booking.id == booking_id))
    await db.flush()

    logger.info(
        "booking_deleted",
        booking_id=booking_id,
        creator_id=creator_id,
        payments_removed=removed.rowcount,
    )
