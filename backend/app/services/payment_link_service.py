"""
Payment links a creator issues against a booking.

Flow:
  1. Authorize: the caller must be the booking's creator
  2. Price: the booked content's product, full or split into monthly installments
  3. Seed (or re-use) a pending booking_payments row so its id can travel
     in the checkout metadata
  4. Ask the processor for a hosted checkout link
  5. Mark the row link_sent

If the processor call fails the row stays pending; the next attempt for the
same booking and plan picks it up again instead of leaving orphans behind.
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.errors import ExternalProcessorError, ForbiddenError, NotFound, ValidationError
from app.core.logging import get_logger
from app.core.metrics import record_payment_link
from app.db.base import utcnow
from app.models.booking import Booking, BookingPayment
from app.models.catalog import Content, Product
from app.schemas.payment import FullPlan, InstallmentPlan
from app.services.interfaces.payment_processor import (
    CheckoutLineItem,
    CheckoutRequest,
    PaymentProcessor,
)

logger = get_logger(__name__)
settings = get_settings()


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class Pricing:
    total_cents: int
    charge_cents: int  # what each checkout charges: the total, or one installment
    platform_fee_cents: int
    currency: str
    months: Optional[int] = None


def price_plan(
    total_cents: int,
    currency: str,
    plan: Union[FullPlan, InstallmentPlan],
    min_charge_cents: Optional[int] = None,
    fee_rate: Optional[float] = None,
) -> Pricing:
    """
    Raises:
        ValidationError: total below the minimum charge, or an installment
            below the minimum charge
    """
    minimum = settings.MIN_CHARGE_CENTS if min_charge_cents is None else min_charge_cents
    rate = Decimal(str(settings.PLATFORM_FEE_RATE if fee_rate is None else fee_rate))

    if total_cents < minimum:
        raise ValidationError(f"Product price must be at least {minimum} cents.")

    fee = round_half_up(Decimal(total_cents) * rate)

    if isinstance(plan, FullPlan):
        return Pricing(total_cents, total_cents, fee, currency)

    months = plan.installment_months
    if total_cents < minimum * months:
        max_months = total_cents // minimum
        raise ValidationError(
            f"Each installment must be at least {minimum} cents; "
            f"this product allows at most {max_months} months."
        )
    installment = round_half_up(Decimal(total_cents) / Decimal(months))
    return Pricing(total_cents, installment, fee, currency, months=months)


async def _load_priced_booking(db: AsyncSession, booking_id: str, caller_id: str) -> tuple[Booking, Product]:
    booking = (
        await db.execute(select(Booking).where(Booking.id == booking_id))
    ).scalar_one_or_none()
    if booking is None:
        raise NotFound("Booking not found")
    if booking.creator_id != caller_id:
        raise ForbiddenError("Only the creator can send a payment link for this booking")

    product_id = None
    if booking.content_id:
        product_id = (
            await db.execute(select(Content.product_id).where(Content.id == booking.content_id))
        ).scalar_one_or_none()
    if not product_id:
        raise ValidationError("This booking's post has no product attached.")

    product = (
        await db.execute(select(Product).where(Product.id == product_id))
    ).scalar_one_or_none()
    if product is None:
        raise ValidationError("Product not found for this booking.")
    return booking, product


async def _seed_pending_payment(
    db: AsyncSession,
    booking: Booking,
    product: Product,
    caller_id: str,
    plan_type: str,
    pricing: Pricing,
) -> BookingPayment:
    pending = (
        await db.execute(
            select(BookingPayment)
            .where(
                BookingPayment.booking_id == booking.id,
                BookingPayment.plan_type == plan_type,
                BookingPayment.status == "pending",
            )
            .order_by(BookingPayment.created_at.desc())
            .limit(1)
        )
    ).scalar_one_or_none()

    if pending is None:
        pending = BookingPayment(booking_id=booking.id, plan_type=plan_type, status="pending")
        db.add(pending)
    else:
        logger.info("payment_link_reusing_pending", booking_payment_id=pending.id, booking_id=booking.id)

    pending.product_id = product.id
    pending.closer_user_id = caller_id
    pending.buyer_id = booking.buyer_id
    pending.installment_months = pricing.months
    pending.amount_total_cents = pricing.total_cents
    pending.installment_amount_cents = pricing.charge_cents if pricing.months else None
    pending.platform_fee_cents = pricing.platform_fee_cents
    pending.currency = pricing.currency

    await db.commit()
    return pending


async def issue_payment_link(
    db: AsyncSession,
    processor: PaymentProcessor,
    booking_id: str,
    caller_id: str,
    plan: Union[FullPlan, InstallmentPlan],
) -> BookingPayment:
    """
    Create a checkout link for a booking and record it.

    Raises:
        NotFound: no such booking
        ForbiddenError: caller is not the booking's creator
        ValidationError: no product, product too cheap, or installments too small
        ExternalProcessorError: the processor refused; the row stays pending
    """
    plan_type = plan.plan_type
    try:
        booking, product = await _load_priced_booking(db, booking_id, caller_id)
        currency = (product.currency or settings.DEFAULT_CURRENCY).lower()
        pricing = price_plan(product.amount_cents, currency, plan)
    except ValidationError:
        record_payment_link(plan_type, "rejected")
        raise

    payment = await _seed_pending_payment(db, booking, product, caller_id, plan_type, pricing)

    metadata = {
        "booking_id": booking.id,
        "booking_payment_id": payment.id,
        "product_id": product.id,
        "creator_id": booking.creator_id,
        "buyer_id": booking.buyer_id,
        "content_id": booking.content_id or "",
        "plan_type": plan_type,
        "plan_months": str(pricing.months or 1),
        "closer_user_id": caller_id,
    }
    request = CheckoutRequest(
        mode="subscription" if pricing.months else "payment",
        line_item=CheckoutLineItem(
            name=product.title or "Booking",
            unit_amount_cents=pricing.charge_cents,
            currency=pricing.currency,
            recurring_months=pricing.months,
        ),
        metadata=metadata,
        success_url=f"{settings.SITE_URL}/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=f"{settings.SITE_URL}/dashboard",
    )

    try:
        checkout = await processor.create_checkout_session(request)
    except ExternalProcessorError as e:
        record_payment_link(plan_type, "processor_error")
        logger.error(
            "payment_link_failed",
            booking_id=booking.id,
            booking_payment_id=payment.id,
            status_code=e.status_code,
            error=e.message,
        )
        raise

    now = utcnow()
    await db.execute(
        update(BookingPayment)
        .where(BookingPayment.id == payment.id)
        .values(
            status="link_sent",
            link_url=checkout.url,
            link_sent_at=now,
            external_session_id=checkout.id,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(payment)

    record_payment_link(plan_type, "link_sent")
    logger.info(
        "payment_link_sent",
        booking_id=booking.id,
        booking_payment_id=payment.id,
        plan_type=plan_type,
        months=pricing.months,
        charge_cents=pricing.charge_cents,
    )
    return payment
