from app.schemas.booking_target import (
    BookingTargetCreate, BookingTargetUpdate, BookingTargetResponse,
    RoutingConfigUpdate, RoutingConfigResponse, TestPickResponse,
)
from app.schemas.payment import (
    FullPlan, InstallmentPlan, PaymentPlan, parse_plan,
    BookingPaymentResponse, PaymentLinkResponse,
)
from app.schemas.booking import (
    BookingSeed, BookingResponse, BookingSeedResponse,
    BookingWithPayments, BookingListResponse, BookingDeleteResponse,
)
from app.schemas.webhook import WebhookResponse

__all__ = [
    "BookingTargetCreate", "BookingTargetUpdate", "BookingTargetResponse",
    "RoutingConfigUpdate", "RoutingConfigResponse", "TestPickResponse",
    "FullPlan", "InstallmentPlan", "PaymentPlan", "parse_plan",
    "BookingPaymentResponse", "PaymentLinkResponse",
    "BookingSeed", "BookingResponse", "BookingSeedResponse",
    "BookingWithPayments", "BookingListResponse", "BookingDeleteResponse",
    "WebhookResponse",
]
