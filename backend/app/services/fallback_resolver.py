"""
Booking link resolution for "book a call" clicks.

The chain is an ordered list of resolvers. Each one returns a Resolution or
None; the first Resolution wins. Every candidate URL must be an absolute
http(s) URL, anything else counts as absent and the chain moves on.

  1. content_override   the content item's own booking_url (no counter bump)
  2. allocation         atomic pick-and-bump over the creator's booking targets
  3. legacy_closer      highest-weight active row in the pre-migration table
  4. profile_default    the creator's profile URL, only if allow_booking
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import NoDestinationConfigured
from app.core.logging import get_logger
from app.core.metrics import record_resolution
from app.models.catalog import Content, LegacyCloser, Profile
from app.services.routing_service import pick_and_bump
from app.utils.urls import is_http_url

logger = get_logger(__name__)


@dataclass(frozen=True)
class BookingRequest:
    creator_id: str
    content_id: Optional[str] = None
    viewer_id: Optional[str] = None


@dataclass(frozen=True)
class Resolution:
    url: str
    tier: str
    target_id: Optional[str] = None


Resolver = Callable[[AsyncSession, BookingRequest], Awaitable[Optional[Resolution]]]


def _usable(url: Optional[str]) -> Optional[str]:
    if is_http_url(url):
        return url.strip()
    return None


async def resolve_content_override(db: AsyncSession, req: BookingRequest) -> Optional[Resolution]:
    if not req.content_id:
        return None
    booking_url = (
        await db.execute(select(Content.booking_url).where(Content.id == req.content_id))
    ).scalar_one_or_none()
    url = _usable(booking_url)
    return Resolution(url=url, tier="content_override") if url else None


async def resolve_allocation(db: AsyncSession, req: BookingRequest) -> Optional[Resolution]:
    try:
        picked = await pick_and_bump(db, req.creator_id, req.viewer_id)
    except SQLAlchemyError as e:
        # Fall through to the legacy tiers
        await db.rollback()
        logger.error("allocation_failed", creator_id=req.creator_id, error=str(e))
        return None
    if picked is None:
        return None
    url = _usable(picked.destination_url)
    if not url:
        logger.warning("allocation_url_unusable", creator_id=req.creator_id, target_id=picked.target_id)
        return None
    return Resolution(url=url, tier="allocation", target_id=picked.target_id)


async def resolve_legacy_closer(db: AsyncSession, req: BookingRequest) -> Optional[Resolution]:
    row = (
        await db.execute(
            select(LegacyCloser)
            .where(LegacyCloser.creator_id == req.creator_id, LegacyCloser.active.is_(True))
            .order_by(LegacyCloser.weight.desc(), LegacyCloser.created_at.asc(), LegacyCloser.id.asc())
            .limit(1)
        )
    ).scalar_one_or_none()
    if row is None:
        return None
    url = _usable(row.destination_url)
    return Resolution(url=url, tier="legacy_closer", target_id=row.id) if url else None


async def resolve_profile_default(db: AsyncSession, req: BookingRequest) -> Optional[Resolution]:
    profile = (
        await db.execute(select(Profile).where(Profile.id == req.creator_id))
    ).scalar_one_or_none()
    if profile is None or not profile.allow_booking:
        return None
    url = _usable(profile.booking_url)
    return Resolution(url=url, tier="profile_default") if url else None


RESOLUTION_CHAIN: tuple[Resolver, ...] = (
    resolve_content_override,
    resolve_allocation,
    resolve_legacy_closer,
    resolve_profile_default,
)


async def resolve_booking_destination(
    db: AsyncSession,
    req: BookingRequest,
    chain: tuple[Resolver, ...] = RESOLUTION_CHAIN,
) -> Resolution:
    """
    Walk the chain and return the first usable destination.

    Raises:
        NoDestinationConfigured: every tier came back empty
    """
    for resolver in chain:
        resolution = await resolver(db, req)
        if resolution is not None:
            record_resolution(resolution.tier)
            logger.info(
                "booking_destination_resolved",
                creator_id=req.creator_id,
                content_id=req.content_id,
                tier=resolution.tier,
                target_id=resolution.target_id,
            )
            return resolution

    record_resolution("none")
    logger.info("booking_destination_missing", creator_id=req.creator_id, content_id=req.content_id)
    raise NoDestinationConfigured()
