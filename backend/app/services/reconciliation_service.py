"""
Payment event reconciliation.

Turns verified processor events into purchase, booking and booking-payment
rows. Deliveries are at-least-once and may arrive out of order, so every
write here is keyed by a processor id and is safe to apply twice.

PURCHASE UPSERT
===============

  1. Row with this checkout session id exists -> replay, no change
     (a row still pending or expired is promoted to paid)
  2. Row with this payment intent id exists   -> update in place
     (a refunded row is never moved back to paid)
  3. Otherwise INSERT ... ON CONFLICT DO NOTHING
     If the insert hits a unique key, a concurrent delivery won: success.

Never select-then-insert without the ON CONFLICT guard; two deliveries of
the same event can both see "no row" and both insert.

ISOLATION
=========

  The critical step (the purchase write) commits on its own. Linkage and
  other bookkeeping run afterwards; their failures are logged and never undo
  the committed purchase.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict
from app.core.logging import get_logger
from app.core.metrics import record_purchase_upsert
from app.db.base import utcnow
from app.db.session import insert_for
from app.models.booking import Booking, BookingPayment
from app.models.catalog import Content
from app.models.purchase import Purchase
from app.services.linkage_service import link_booking, link_booking_if_any

logger = get_logger(__name__)


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    REPLAYED = "replayed"
    RACED = "raced"


@dataclass(frozen=True)
class PurchaseUpsert:
    purchase_id: Optional[str]
    outcome: UpsertOutcome

    @property
    def mutated(self) -> bool:
        return self.outcome in (UpsertOutcome.INSERTED, UpsertOutcome.UPDATED)


@dataclass(frozen=True)
class EventResult:
    event_type: str
    handled: bool
    detail: Optional[str] = None


def _metadata(obj: dict[str, Any]) -> dict[str, Any]:
    return obj.get("metadata") or {}


def _meta(obj: dict[str, Any], key: str) -> Optional[str]:
    value = _metadata(obj).get(key)
    return str(value) if value not in (None, "") else None


def _object_id(value: Any) -> Optional[str]:
    """Stripe expands some references into objects; accept either form."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, dict):
        return value.get("id")
    return None


async def _creator_for_content(db: AsyncSession, content_id: Optional[str], creator_id: Optional[str]) -> Optional[str]:
    if creator_id or not content_id:
        return creator_id
    return (
        await db.execute(select(Content.creator_id).where(Content.id == content_id))
    ).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Purchases
# ---------------------------------------------------------------------------


async def _write_purchase(db: AsyncSession, session: dict[str, Any]) -> PurchaseUpsert:
    session_id = session["id"]
    buyer_id = _meta(session, "buyer_id")
    content_id = _meta(session, "content_id") or _meta(session, "post_id")
    creator_id = await _creator_for_content(db, content_id, _meta(session, "creator_id"))
    transaction_id = _object_id(session.get("payment_intent"))
    subscription_id = _object_id(session.get("subscription"))
    amount_cents = session.get("amount_total") if isinstance(session.get("amount_total"), int) else 0
    currency = session.get("currency") or "usd"

    existing = (
        await db.execute(
            select(Purchase)
            .where(Purchase.external_session_id == session_id)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()
    if existing is not None:
        if existing.status in ("pending", "expired"):
            await db.execute(
                update(Purchase)
                .where(Purchase.id == existing.id, Purchase.status.in_(("pending", "expired")))
                .values(
                    status="paid",
                    external_transaction_id=existing.external_transaction_id or transaction_id,
                    external_subscription_id=existing.external_subscription_id or subscription_id,
                    amount_cents=amount_cents,
                    currency=currency,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            await db.commit()
            return PurchaseUpsert(existing.id, UpsertOutcome.UPDATED)
        return PurchaseUpsert(existing.id, UpsertOutcome.REPLAYED)

    if transaction_id:
        by_txn = (
            await db.execute(
                select(Purchase.id, Purchase.status).where(Purchase.external_transaction_id == transaction_id)
            )
        ).one_or_none()
        if by_txn is not None:
            if by_txn.status == "refunded":
                logger.info("purchase_already_refunded", session_id=session_id, purchase_id=by_txn.id)
                return PurchaseUpsert(by_txn.id, UpsertOutcome.REPLAYED)
            try:
                result = await db.execute(
                    update(Purchase)
                    .where(Purchase.id == by_txn.id, Purchase.status != "refunded")
                    .values(
                        buyer_id=buyer_id,
                        creator_id=creator_id,
                        content_id=content_id,
                        external_session_id=session_id,
                        external_subscription_id=subscription_id,
                        status="paid",
                        amount_cents=amount_cents,
                        currency=currency,
                        updated_at=utcnow(),
                    )
                    .execution_options(synchronize_session=False)
                )
                await db.commit()
            except IntegrityError:
                # Another delivery attached this session id to a different row
                await db.rollback()
                raise Conflict(f"session {session_id} already recorded")
            if not result.rowcount:
                # Refunded between the lookup and the update
                return PurchaseUpsert(by_txn.id, UpsertOutcome.REPLAYED)
            return PurchaseUpsert(by_txn.id, UpsertOutcome.UPDATED)

    inserted = await db.execute(
        insert_for(db, Purchase.__table__)
        .values(
            buyer_id=buyer_id,
            creator_id=creator_id,
            content_id=content_id,
            external_session_id=session_id,
            external_transaction_id=transaction_id,
            external_subscription_id=subscription_id,
            amount_cents=amount_cents,
            currency=currency,
            status="paid",
        )
        .on_conflict_do_nothing()
        .returning(Purchase.__table__.c.id)
    )
    purchase_id = inserted.scalar_one_or_none()
    await db.commit()

    if purchase_id is None:
        winner = (
            await db.execute(select(Purchase.id).where(Purchase.external_session_id == session_id))
        ).scalar_one_or_none()
        logger.info("purchase_insert_raced", session_id=session_id, purchase_id=winner)
        return PurchaseUpsert(winner, UpsertOutcome.RACED)

    return PurchaseUpsert(purchase_id, UpsertOutcome.INSERTED)


async def upsert_purchase_from_session(db: AsyncSession, session: dict[str, Any]) -> PurchaseUpsert:
    try:
        return await _write_purchase(db, session)
    except Conflict as e:
        winner = (
            await db.execute(select(Purchase.id).where(Purchase.external_session_id == session["id"]))
        ).scalar_one_or_none()
        logger.info("purchase_conflict_resolved", session_id=session["id"], purchase_id=winner, detail=e.message)
        return PurchaseUpsert(winner, UpsertOutcome.RACED)


async def _link_after_purchase(
    db: AsyncSession,
    upsert: PurchaseUpsert,
    session: dict[str, Any],
) -> None:
    """Non-critical: a failure here never fails the delivery."""
    if not upsert.mutated or not upsert.purchase_id:
        return
    try:
        purchase = (
            await db.execute(
                select(Purchase)
                .where(Purchase.id == upsert.purchase_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one()
        await link_booking_if_any(
            db,
            buyer_id=purchase.buyer_id,
            creator_id=purchase.creator_id,
            content_id=purchase.content_id,
            purchase_id=purchase.id,
        )
    except Exception as e:
        await db.rollback()
        logger.error(
            "booking_linkage_failed",
            purchase_id=upsert.purchase_id,
            session_id=session.get("id"),
            error=str(e),
        )


async def record_paid_session(db: AsyncSession, session: dict[str, Any]) -> PurchaseUpsert:
    upsert = await upsert_purchase_from_session(db, session)
    record_purchase_upsert(upsert.outcome.value)
    logger.info(
        "purchase_reconciled",
        session_id=session.get("id"),
        purchase_id=upsert.purchase_id,
        outcome=upsert.outcome.value,
    )
    await _link_after_purchase(db, upsert, session)
    return upsert


async def mark_refunded(db: AsyncSession, transaction_id: Optional[str]) -> bool:
    if not transaction_id:
        logger.warning("refund_without_transaction_id")
        return False
    result = await db.execute(
        update(Purchase)
        .where(Purchase.external_transaction_id == transaction_id)
        .values(status="refunded", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount == 0:
        logger.warning("refund_for_unknown_transaction", transaction_id=transaction_id)
        return False
    logger.info("purchase_refunded", transaction_id=transaction_id)
    return True


# ---------------------------------------------------------------------------
# Bookings (zero-amount reservation sessions)
# ---------------------------------------------------------------------------


async def insert_booking_from_session(db: AsyncSession, session: dict[str, Any]) -> Optional[str]:
    buyer_id = _meta(session, "buyer_id")
    content_id = _meta(session, "content_id") or _meta(session, "post_id")
    creator_id = await _creator_for_content(db, content_id, _meta(session, "creator_id"))

    if not buyer_id or not creator_id:
        logger.warning(
            "booking_insert_skipped",
            reason="missing_buyer_or_creator",
            buyer_id=buyer_id,
            creator_id=creator_id,
            content_id=content_id,
            session_id=session.get("id"),
        )
        return None

    # A reservation may already have been seeded from the site
    seeded = (
        await db.execute(
            select(Booking.id).where(
                Booking.buyer_id == buyer_id,
                Booking.creator_id == creator_id,
                Booking.content_id == content_id if content_id else Booking.content_id.is_(None),
                Booking.status == "booked",
            ).limit(1)
        )
    ).scalar_one_or_none()
    if seeded is not None:
        logger.info("booking_already_seeded", booking_id=seeded, session_id=session.get("id"))
        return seeded

    inserted = await db.execute(
        insert_for(db, Booking.__table__)
        .values(
            content_id=content_id,
            buyer_id=buyer_id,
            creator_id=creator_id,
            status="booked",
            external_session_id=session.get("id"),
        )
        .on_conflict_do_nothing()
        .returning(Booking.__table__.c.id)
    )
    booking_id = inserted.scalar_one_or_none()
    await db.commit()
    logger.info(
        "booking_confirmed",
        booking_id=booking_id,
        session_id=session.get("id"),
        replay=booking_id is None,
    )
    return booking_id


# ---------------------------------------------------------------------------
# Booking payments (links issued by creators)
# ---------------------------------------------------------------------------


async def handle_booking_payment_session(db: AsyncSession, session: dict[str, Any]) -> None:
    payment_id = _meta(session, "booking_payment_id")
    booking_id = _meta(session, "booking_id")
    plan_type = _meta(session, "plan_type") or "full"
    paid = session.get("payment_status") == "paid"
    amount = session.get("amount_total") if isinstance(session.get("amount_total"), int) else None

    values: dict[str, Any] = {
        "external_session_id": session.get("id"),
        "external_transaction_id": _object_id(session.get("payment_intent")),
        "external_subscription_id": _object_id(session.get("subscription")),
        "updated_at": utcnow(),
    }
    if amount is not None:
        key = "installment_amount_cents" if plan_type == "installment" else "amount_total_cents"
        values[key] = amount
    if paid:
        values["status"] = "paid"
        values["completed_at"] = utcnow()

    await db.execute(
        update(BookingPayment)
        .where(BookingPayment.id == payment_id, BookingPayment.status != "paid")
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("booking_payment_session_recorded", booking_payment_id=payment_id, paid=paid)

    if not paid:
        return

    # Installment checkouts (mode=subscription) are keyed by session id and carry the subscription id
    upsert = await upsert_purchase_from_session(db, session)
    record_purchase_upsert(upsert.outcome.value)
    if upsert.mutated and upsert.purchase_id and booking_id:
        try:
            if await link_booking(db, booking_id, upsert.purchase_id):
                await db.commit()
                return
        except Exception as e:
            await db.rollback()
            logger.error("booking_payment_link_failed", booking_id=booking_id, error=str(e))

    if booking_id:
        await _complete_booking(db, booking_id)


async def _complete_booking(db: AsyncSession, booking_id: str) -> None:
    await db.execute(
        update(Booking)
        .where(Booking.id == booking_id)
        .values(status="completed", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def mark_booking_payment_failed(db: AsyncSession, session: dict[str, Any]) -> None:
    filters = [BookingPayment.status.in_(("pending", "link_sent"))]
    payment_id = _meta(session, "booking_payment_id")
    if payment_id:
        filters.append(BookingPayment.id == payment_id)
    else:
        filters.append(BookingPayment.external_session_id == session.get("id"))

    result = await db.execute(
        update(BookingPayment)
        .where(*filters)
        .values(status="failed", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    if result.rowcount:
        logger.info("booking_payment_failed", session_id=session.get("id"), booking_payment_id=payment_id)


async def handle_invoice_paid(db: AsyncSession, invoice: dict[str, Any]) -> None:
    """First (or any) installment paid on a subscription plan."""
    payment_id = _meta(invoice, "booking_payment_id")
    booking_id = _meta(invoice, "booking_id")
    if not payment_id:
        lines = (invoice.get("lines") or {}).get("data") or []
        if lines:
            line_meta = lines[0].get("metadata") or {}
            payment_id = line_meta.get("booking_payment_id")
            booking_id = booking_id or line_meta.get("booking_id")

    if not payment_id:
        logger.info("invoice_without_booking_payment", invoice_id=invoice.get("id"))
        return

    values: dict[str, Any] = {
        "status": "paid",
        "completed_at": utcnow(),
        "updated_at": utcnow(),
    }
    transaction_id = _object_id(invoice.get("payment_intent"))
    if transaction_id:
        values["external_transaction_id"] = transaction_id
    subscription_id = _object_id(invoice.get("subscription"))
    if subscription_id:
        values["external_subscription_id"] = subscription_id
    if isinstance(invoice.get("amount_paid"), int):
        values["installment_amount_cents"] = invoice["amount_paid"]

    await db.execute(
        update(BookingPayment)
        .where(BookingPayment.id == payment_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("installment_paid", booking_payment_id=payment_id, invoice_id=invoice.get("id"))

    if booking_id:
        try:
            await _complete_booking(db, booking_id)
        except Exception as e:
            await db.rollback()
            logger.error("booking_complete_failed", booking_id=booking_id, error=str(e))


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------


async def _on_checkout_completed(db: AsyncSession, session: dict[str, Any]) -> Optional[str]:
    if session.get("mode") == "setup":
        await insert_booking_from_session(db, session)
        return "booking"

    if _meta(session, "booking_payment_id"):
        await handle_booking_payment_session(db, session)
        return "booking_payment"

    if session.get("mode") == "payment" and session.get("payment_status") == "paid":
        await record_paid_session(db, session)
        return "purchase"

    return None


async def _on_async_payment_succeeded(db: AsyncSession, session: dict[str, Any]) -> Optional[str]:
    if _meta(session, "booking_payment_id"):
        await handle_booking_payment_session(db, {**session, "payment_status": "paid"})
        return "booking_payment"
    await record_paid_session(db, session)
    return "purchase"


async def _on_async_payment_failed(db: AsyncSession, session: dict[str, Any]) -> Optional[str]:
    await mark_booking_payment_failed(db, session)
    return "booking_payment"


async def _on_session_expired(db: AsyncSession, session: dict[str, Any]) -> Optional[str]:
    await db.execute(
        update(Purchase)
        .where(Purchase.external_session_id == session.get("id"), Purchase.status == "pending")
        .values(status="expired", updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await mark_booking_payment_failed(db, session)
    return "expired"


async def _on_invoice_paid(db: AsyncSession, invoice: dict[str, Any]) -> Optional[str]:
    await handle_invoice_paid(db, invoice)
    return "installment"


async def _on_charge_refunded(db: AsyncSession, charge: dict[str, Any]) -> Optional[str]:
    found = await mark_refunded(db, _object_id(charge.get("payment_intent")))
    return "refund" if found else "refund_unknown"


EventHandler = Callable[[AsyncSession, dict[str, Any]], Awaitable[Optional[str]]]

EVENT_HANDLERS: dict[str, EventHandler] = {
    "checkout.session.completed": _on_checkout_completed,
    "checkout.session.async_payment_succeeded": _on_async_payment_succeeded,
    "checkout.session.async_payment_failed": _on_async_payment_failed,
    "checkout.session.expired": _on_session_expired,
    "invoice.payment_succeeded": _on_invoice_paid,
    "charge.refunded": _on_charge_refunded,
}


async def handle_event(db: AsyncSession, event: dict[str, Any]) -> EventResult:
    """
    Apply one verified processor event.

    Unknown event types are acknowledged without side effects; the processor
    retries anything that is not a 2xx, and there is nothing to retry for.
    """
    event_type = event.get("type") or "unknown"
    handler = EVENT_HANDLERS.get(event_type)
    if handler is None:
        logger.info("webhook_event_ignored", event_type=event_type, event_id=event.get("id"))
        return EventResult(event_type=event_type, handled=False)

    obj = (event.get("data") or {}).get("object") or {}
    detail = await handler(db, obj)
    logger.info("webhook_event_handled", event_type=event_type, event_id=event.get("id"), detail=detail)
    return EventResult(event_type=event_type, handled=True, detail=detail)
