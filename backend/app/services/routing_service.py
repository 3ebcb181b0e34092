"""
Routing service: atomic pick-and-bump plus creator-side target management.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  Two clicks for the same creator arrive together. Both read the same recent
  allocation sample, both pick the least-used target, both bump it.
  Result: the "fair" rotation sends two leads in a row to one closer.

Solution:
  routing_configs carries a `version` column.

  1. Read the routing config (mode, default target, version)
  2. Read active targets and the newest N allocation events
  3. Run the pure allocation engine
  4. UPDATE routing_configs SET version = version + 1
     WHERE creator_id = :creator_id AND version = :read_version
  5. If rows_affected == 0, another click committed first -> rollback, retry

  The counter itself is bumped server-side in the same transaction:
     UPDATE booking_targets SET uses_count = uses_count + 1, last_used_at = now
     WHERE id = :target_id AND active
  so no caller ever writes a value it read.

  Modes that ignore history (single, sticky with a viewer) skip step 4: their
  answer cannot go stale, only the increment has to be atomic.

  If the retry budget is exhausted the last pick is committed without the
  version check. Rotation fairness degrades under that contention but counts
  stay exact.
"""

import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ForbiddenError, NotFound, ValidationError
from app.core.logging import get_logger
from app.core.metrics import allocation_latency, allocation_retries, record_allocation
from app.db.base import utcnow
from app.db.session import insert_for
from app.models.booking_target import AllocationEvent, BookingTarget, RoutingConfig
from app.schemas.booking_target import BookingTargetCreate, BookingTargetUpdate, RoutingConfigUpdate
from app.services import allocation
from app.services.allocation import RoutingMode
from app.utils.urls import is_http_url

logger = get_logger(__name__)
settings = get_settings()


@dataclass(frozen=True)
class PickResult:
    target_id: str
    destination_url: str
    mode: RoutingMode


async def _load_active_targets(db: AsyncSession, creator_id: str) -> list[BookingTarget]:
    result = await db.execute(
        select(BookingTarget)
        .where(BookingTarget.creator_id == creator_id, BookingTarget.active.is_(True))
        .order_by(BookingTarget.name.asc(), BookingTarget.id.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def _recent_target_ids(db: AsyncSession, creator_id: str) -> list[Optional[str]]:
    result = await db.execute(
        select(AllocationEvent.target_id)
        .where(AllocationEvent.creator_id == creator_id)
        .order_by(AllocationEvent.created_at.desc(), AllocationEvent.id.desc())
        .limit(settings.ALLOCATION_SAMPLE_SIZE)
    )
    return list(result.scalars().all())


async def pick_and_bump(
    db: AsyncSession,
    creator_id: str,
    viewer_id: Optional[str] = None,
) -> Optional[PickResult]:
    """
    Choose a booking target for a click and record it, atomically.
    Returns None when the creator has no active target.
    """
    start = time.perf_counter()
    max_attempts = max(1, settings.ALLOCATION_MAX_RETRIES)

    for attempt in range(1, max_attempts + 1):
        routing = (
            await db.execute(
                select(RoutingConfig)
                .where(RoutingConfig.creator_id == creator_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        mode = RoutingMode.parse(routing.mode if routing else None)

        targets = await _load_active_targets(db, creator_id)
        if not targets:
            record_allocation(mode.value, picked=False)
            return None

        needs_history = allocation.depends_on_history(mode, viewer_id)
        recent = await _recent_target_ids(db, creator_id) if needs_history else []

        chosen = allocation.pick(
            creator_id,
            viewer_id,
            targets,
            mode,
            default_target_id=routing.default_target_id if routing else None,
            recent_target_ids=recent,
        )
        if chosen is None:
            record_allocation(mode.value, picked=False)
            return None

        if needs_history and routing is not None and attempt < max_attempts:
            cas = await db.execute(
                update(RoutingConfig)
                .where(
                    RoutingConfig.creator_id == creator_id,
                    RoutingConfig.version == routing.version,
                )
                .values(version=RoutingConfig.version + 1)
                .execution_options(synchronize_session=False)
            )
            if cas.rowcount == 0:
                allocation_retries.inc()
                logger.info(
                    "allocation_retry",
                    creator_id=creator_id,
                    attempt=attempt,
                    reason="version_conflict",
                )
                await db.rollback()
                continue
        elif needs_history and routing is not None:
            logger.warning("allocation_cas_exhausted", creator_id=creator_id, attempts=attempt)

        bumped = await db.execute(
            update(BookingTarget)
            .where(BookingTarget.id == chosen.id, BookingTarget.active.is_(True))
            .values(uses_count=BookingTarget.uses_count + 1, last_used_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if bumped.rowcount == 0:
            # Deactivated or deleted between read and write
            logger.info("allocation_retry", creator_id=creator_id, attempt=attempt, reason="target_gone")
            await db.rollback()
            continue

        db.add(AllocationEvent(creator_id=creator_id, target_id=chosen.id, viewer_id=viewer_id))
        await db.commit()

        allocation_latency.observe(time.perf_counter() - start)
        record_allocation(mode.value, picked=True)
        logger.info(
            "allocation_picked",
            creator_id=creator_id,
            target_id=chosen.id,
            mode=mode.value,
            attempt=attempt,
        )
        return PickResult(target_id=chosen.id, destination_url=chosen.destination_url, mode=mode)

    logger.warning("allocation_failed", creator_id=creator_id, attempts=max_attempts)
    return None


# ---------------------------------------------------------------------------
# Creator-side management
# ---------------------------------------------------------------------------


async def list_targets(db: AsyncSession, creator_id: str) -> list[BookingTarget]:
    result = await db.execute(
        select(BookingTarget)
        .where(BookingTarget.creator_id == creator_id)
        .order_by(BookingTarget.name.asc(), BookingTarget.id.asc())
    )
    return list(result.scalars().all())


async def _get_owned_target(db: AsyncSession, target_id: str, creator_id: str) -> BookingTarget:
    target = (
        await db.execute(select(BookingTarget).where(BookingTarget.id == target_id))
    ).scalar_one_or_none()
    if not target:
        raise NotFound("Booking target not found")
    if target.creator_id != creator_id:
        raise ForbiddenError("You do not own this booking target")
    return target


async def upsert_target(db: AsyncSession, creator_id: str, data: BookingTargetCreate) -> BookingTarget:
    """Add a destination, or update the existing one with the same URL."""
    url = data.destination_url.strip()
    if not is_http_url(url):
        raise ValidationError("Enter a valid http(s) booking URL.")

    existing = (
        await db.execute(
            select(BookingTarget).where(
                BookingTarget.creator_id == creator_id,
                BookingTarget.destination_url == url,
            )
        )
    ).scalar_one_or_none()

    if existing:
        existing.name = data.name
        existing.weight = data.weight
        existing.active = data.active
        target = existing
    else:
        stmt = (
            insert_for(db, BookingTarget.__table__)
            .values(
                creator_id=creator_id,
                name=data.name,
                destination_url=url,
                weight=data.weight,
                active=data.active,
                uses_count=0,
            )
            .on_conflict_do_nothing()
        )
        await db.execute(stmt)
        target = (
            await db.execute(
                select(BookingTarget)
                .where(
                    BookingTarget.creator_id == creator_id,
                    BookingTarget.destination_url == url,
                )
                .execution_options(populate_existing=True)
            )
        ).scalar_one()

    await db.flush()
    logger.info("booking_target_saved", target_id=target.id, creator_id=creator_id, weight=target.weight)
    return target


async def update_target(
    db: AsyncSession,
    target_id: str,
    creator_id: str,
    data: BookingTargetUpdate,
) -> BookingTarget:
    target = await _get_owned_target(db, target_id, creator_id)
    changes = data.model_dump(exclude_unset=True)

    if "destination_url" in changes:
        url = (changes["destination_url"] or "").strip()
        if not is_http_url(url):
            raise ValidationError("Enter a valid http(s) booking URL.")
        changes["destination_url"] = url

    for field, value in changes.items():
        if value is None and field in ("weight", "active", "destination_url"):
            continue
        setattr(target, field, value)

    await db.flush()
    logger.info("booking_target_updated", target_id=target.id, fields=sorted(changes))
    return target


async def delete_target(db: AsyncSession, target_id: str, creator_id: str) -> None:
    await _get_owned_target(db, target_id, creator_id)
    await db.execute(
        update(RoutingConfig)
        .where(RoutingConfig.default_target_id == target_id)
        .values(default_target_id=None)
        .execution_options(synchronize_session=False)
    )
    await db.execute(delete(BookingTarget).where(BookingTarget.id == target_id))
    await db.flush()
    logger.info("booking_target_deleted", target_id=target_id, creator_id=creator_id)


async def get_routing(db: AsyncSession, creator_id: str) -> RoutingConfig:
    routing = (
        await db.execute(
            select(RoutingConfig)
            .where(RoutingConfig.creator_id == creator_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if routing is None:
        # Absence means single; hand back an unsaved default
        routing = RoutingConfig(creator_id=creator_id, mode=RoutingMode.SINGLE.value, version=0)
    return routing


async def set_routing(db: AsyncSession, creator_id: str, data: RoutingConfigUpdate) -> RoutingConfig:
    if data.default_target_id:
        await _get_owned_target(db, data.default_target_id, creator_id)

    await db.execute(
        insert_for(db, RoutingConfig.__table__)
        .values(
            creator_id=creator_id,
            mode=RoutingMode.SINGLE.value,
            version=1,
        )
        .on_conflict_do_nothing()
    )
    await db.execute(
        update(RoutingConfig)
        .where(RoutingConfig.creator_id == creator_id)
        .values(
            mode=data.mode.value,
            default_target_id=data.default_target_id,
            version=RoutingConfig.version + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    routing = (
        await db.execute(
            select(RoutingConfig)
            .where(RoutingConfig.creator_id == creator_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one()
    logger.info("routing_updated", creator_id=creator_id, mode=routing.mode)
    return routing
