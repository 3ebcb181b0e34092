"""
Pydantic schemas for payment links.

The plan is a closed tagged union on `plan_type`: a full payment carries
nothing else, an installment plan must say how many months.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.core.errors import ValidationError


class FullPlan(BaseModel):
    plan_type: Literal["full"]


class InstallmentPlan(BaseModel):
    plan_type: Literal["installment"]
    installment_months: int = Field(..., ge=2, le=24)


PaymentPlan = Annotated[Union[FullPlan, InstallmentPlan], Field(discriminator="plan_type")]


_plan_adapter = TypeAdapter(PaymentPlan)


def parse_plan(body: Any) -> Union[FullPlan, InstallmentPlan]:
    """Validate a raw request body into a plan, with client-facing messages."""
    try:
        return _plan_adapter.validate_python(body)
    except PydanticValidationError as e:
        fields = {str(part) for err in e.errors() for part in err.get("loc", ())}
        if "installment_months" in fields:
            raise ValidationError("installment_months must be an integer between 2 and 24")
        raise ValidationError("plan_type must be 'full' or 'installment'")


class BookingPaymentResponse(BaseModel):
    id: str
    booking_id: str
    plan_type: str
    installment_months: Optional[int]
    status: str
    amount_total_cents: int
    installment_amount_cents: Optional[int]
    platform_fee_cents: int
    currency: str
    external_session_id: Optional[str]
    link_url: Optional[str]
    link_sent_at: Optional[datetime]
    completed_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentLinkResponse(BaseModel):
    url: str
    payment: BookingPaymentResponse
