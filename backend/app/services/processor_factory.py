"""
Payment processor factory.
One processor per process, handed to request handlers as a dependency.
"""

from typing import Optional

from app.core.config import get_settings
from app.infrastructure.stripe_processor import StripeProcessor
from app.services.interfaces.payment_processor import PaymentProcessor


def build_payment_processor() -> PaymentProcessor:
    settings = get_settings()
    return StripeProcessor(
        api_key=settings.STRIPE_SECRET_KEY,
        webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
        tolerance=settings.STRIPE_WEBHOOK_TOLERANCE,
    )


# Singleton instance
_processor: Optional[PaymentProcessor] = None


def get_payment_processor() -> PaymentProcessor:
    """FastAPI dependency; tests override it with a fake."""
    global _processor
    if _processor is None:
        _processor = build_payment_processor()
    return _processor
