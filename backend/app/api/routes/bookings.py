"""
Booking ledger endpoints and payment-link issuance.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.session import get_db
from app.schemas.booking import (
    BookingDeleteResponse,
    BookingListResponse,
    BookingResponse,
    BookingSeed,
    BookingSeedResponse,
    BookingWithPayments,
)
from app.schemas.payment import BookingPaymentResponse, PaymentLinkResponse, parse_plan
from app.services.booking_service import delete_booking, list_creator_bookings, seed_booking
from app.services.interfaces.payment_processor import PaymentProcessor
from app.services.payment_link_service import issue_payment_link
from app.services.processor_factory import get_payment_processor
from app.core.security import get_current_user_id

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/seed", response_model=BookingSeedResponse)
async def seed(
    data: BookingSeed,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Reserve a call on a post. Repeated calls return the open reservation."""
    booking, created = await seed_booking(db, user_id, data.content_id)
    return BookingSeedResponse(booking_id=booking.id, created=created)


@router.get("", response_model=BookingListResponse)
async def list_bookings(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's 100 newest bookings as a creator, with payment records."""
    rows = await list_creator_bookings(db, user_id)
    return BookingListResponse(
        bookings=[
            BookingWithPayments(
                booking=BookingResponse.model_validate(booking),
                payments=[BookingPaymentResponse.model_validate(p) for p in payments],
            )
            for booking, payments in rows
        ]
    )


@router.delete("/{booking_id}", response_model=BookingDeleteResponse)
async def remove_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await delete_booking(db, booking_id, user_id)
    return BookingDeleteResponse()


@router.post(
    "/{booking_id}/payment-link",
    response_model=PaymentLinkResponse,
    status_code=status.HTTP_200_OK,
)
async def create_payment_link(
    booking_id: str,
    body: Any = Body(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """
    Send the buyer a checkout link for the booked post's product.

    Body: `{"plan_type": "full"}` or
    `{"plan_type": "installment", "installment_months": 2..24}`.
    """
    plan = parse_plan(body)
    payment = await issue_payment_link(db, processor, booking_id, user_id, plan)
    return PaymentLinkResponse(
        url=payment.link_url,
        payment=BookingPaymentResponse.model_validate(payment),
    )
