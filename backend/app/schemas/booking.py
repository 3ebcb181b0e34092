"""
Pydantic schemas for bookings and the creator booking list.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from app.schemas.payment import BookingPaymentResponse


class BookingSeed(BaseModel):
    content_id: str = Field(..., min_length=1, max_length=36)


class BookingResponse(BaseModel):
    id: str
    content_id: Optional[str]
    buyer_id: str
    creator_id: str
    status: str
    linked_payment_id: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingSeedResponse(BaseModel):
    ok: bool = True
    booking_id: str
    created: bool


class BookingWithPayments(BaseModel):
    booking: BookingResponse
    payments: list[BookingPaymentResponse]


class BookingListResponse(BaseModel):
    bookings: list[BookingWithPayments]


class BookingDeleteResponse(BaseModel):
    ok: bool = True
