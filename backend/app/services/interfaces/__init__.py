"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .payment_processor import (
    CheckoutLineItem,
    CheckoutRequest,
    CheckoutSession,
    PaymentProcessor,
)

__all__ = ['CheckoutLineItem', 'CheckoutRequest', 'CheckoutSession', 'PaymentProcessor']
