"""
Purchase -> booking linkage.

A booking and the payment it leads to are created independently (the
reservation first, the checkout days later), with no foreign key between
them. After a purchase is recorded we look for the open booking that most
likely produced it:

  - only the buyer's bookings with this creator that are not yet linked
  - newest first, at most LINKAGE_CANDIDATE_LIMIT of them
  - the newest one for the same content inside the lookback window wins
  - otherwise the newest one inside the window
  - otherwise nothing is linked

The booking side is written with UPDATE ... WHERE linked_payment_id IS NULL,
so a booking is linked at most once even when two deliveries race. The
reverse reference on the purchase is best effort.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import record_linkage
from app.db.base import as_utc, utcnow
from app.models.booking import Booking
from app.models.purchase import Purchase

logger = get_logger(__name__)
settings = get_settings()


def choose_candidate(
    candidates: list[Booking],
    content_id: Optional[str],
    cutoff: datetime,
) -> Optional[Booking]:
    """Candidates must already be ordered newest first."""
    in_window = [b for b in candidates if as_utc(b.created_at) >= cutoff]
    if content_id:
        for booking in in_window:
            if booking.content_id == content_id:
                return booking
    return in_window[0] if in_window else None


async def link_booking(
    db: AsyncSession,
    booking_id: str,
    purchase_id: str,
) -> bool:
    """Set-once link of a booking to a purchase. False if already linked."""
    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.linked_payment_id.is_(None))
        .values(linked_payment_id=purchase_id, status="completed", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    try:
        async with db.begin_nested():
            await db.execute(
                update(Purchase)
                .where(Purchase.id == purchase_id)
                .values(booking_id=booking_id)
                .execution_options(synchronize_session=False)
            )
    except SQLAlchemyError as e:
        logger.warning("purchase_booking_ref_failed", purchase_id=purchase_id, error=str(e))
    return True


async def link_booking_if_any(
    db: AsyncSession,
    buyer_id: Optional[str],
    creator_id: Optional[str],
    content_id: Optional[str],
    purchase_id: str,
    lookback_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[str]:
    """
    Link the most likely open booking to `purchase_id`.

    Returns:
        The linked booking id, or None when nothing was linked
    """
    if not buyer_id or not creator_id:
        record_linkage("no_candidate")
        return None

    days = settings.LINKAGE_LOOKBACK_DAYS if lookback_days is None else lookback_days
    cutoff = (now or utcnow()) - timedelta(days=days)

    result = await db.execute(
        select(Booking)
        .where(
            Booking.buyer_id == buyer_id,
            Booking.creator_id == creator_id,
            Booking.linked_payment_id.is_(None),
        )
        .order_by(Booking.created_at.desc(), Booking.id.desc())
        .limit(settings.LINKAGE_CANDIDATE_LIMIT)
    )
    candidate = choose_candidate(list(result.scalars().all()), content_id, cutoff)

    if candidate is None:
        record_linkage("no_candidate")
        logger.info("booking_link_skipped", purchase_id=purchase_id, buyer_id=buyer_id, creator_id=creator_id)
        return None

    if not await link_booking(db, candidate.id, purchase_id):
        record_linkage("already_linked")
        logger.info("booking_already_linked", booking_id=candidate.id, purchase_id=purchase_id)
        return None

    await db.commit()
    record_linkage("linked")
    logger.info(
        "booking_linked",
        booking_id=candidate.id,
        purchase_id=purchase_id,
        same_content=bool(content_id and candidate.content_id == content_id),
    )
    return candidate.id
