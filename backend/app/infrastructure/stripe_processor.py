"""
Stripe implementation of the payment processor interface.
Separated from business logic for clean architecture.

The stripe SDK is synchronous; checkout creation runs in a worker thread so
the event loop keeps serving clicks while Stripe answers.
"""

import asyncio
import json
from typing import Any, Optional

import stripe

from app.core.errors import ExternalProcessorError, SignatureInvalid
from app.core.logging import get_logger
from app.services.interfaces.payment_processor import (
    CheckoutRequest,
    CheckoutSession,
    PaymentProcessor,
)

logger = get_logger(__name__)


class StripeProcessor(PaymentProcessor):
    def __init__(self, api_key: str, webhook_secret: str, tolerance: int = 300):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def verify_event(self, payload: bytes, signature: Optional[str]) -> dict[str, Any]:
        if not signature:
            logger.warning("webhook_signature_missing")
            raise SignatureInvalid("Missing stripe-signature header")
        if not self.webhook_secret:
            logger.error("webhook_secret_not_configured")
            raise SignatureInvalid("Webhook secret not configured")

        try:
            stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret, tolerance=self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            logger.warning("webhook_signature_invalid", error=str(e))
            raise SignatureInvalid("Invalid signature")
        except ValueError as e:
            logger.warning("webhook_payload_invalid", error=str(e))
            raise SignatureInvalid("Invalid payload")

        # Work on plain dicts; StripeObject semantics vary across SDK versions
        return json.loads(payload)

    async def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        if not self.api_key:
            raise ExternalProcessorError("STRIPE_SECRET_KEY is not configured")

        price_data: dict[str, Any] = {
            "currency": request.line_item.currency,
            "unit_amount": request.line_item.unit_amount_cents,
            "product_data": {"name": request.line_item.name},
        }
        if request.line_item.recurring_months:
            price_data["recurring"] = {"interval": "month", "interval_count": 1}

        params: dict[str, Any] = {
            "mode": request.mode,
            "payment_method_types": ["card"],
            "line_items": [{"price_data": price_data, "quantity": 1}],
            "metadata": request.metadata,
            "success_url": request.success_url,
            "cancel_url": request.cancel_url,
        }
        if request.mode == "subscription":
            params["subscription_data"] = {"metadata": request.metadata}

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create, api_key=self.api_key, **params
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe_checkout_failed",
                error=e.user_message or str(e),
                http_status=e.http_status,
                code=e.code,
            )
            raise ExternalProcessorError(
                e.user_message or "Payment processor rejected the request",
                processor_status=e.http_status,
            )

        logger.info("stripe_checkout_created", session_id=session.id, mode=request.mode)
        return CheckoutSession(id=session.id, url=session.url)
