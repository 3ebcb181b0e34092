from app.models.booking_target import BookingTarget, RoutingConfig, AllocationEvent
from app.models.booking import Booking, BookingPayment
from app.models.purchase import Purchase
from app.models.catalog import Profile, Content, Product, LegacyCloser

__all__ = [
    "BookingTarget", "RoutingConfig", "AllocationEvent",
    "Booking", "BookingPayment",
    "Purchase",
    "Profile", "Content", "Product", "LegacyCloser",
]
