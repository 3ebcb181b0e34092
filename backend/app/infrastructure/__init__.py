"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .stripe_processor import StripeProcessor

__all__ = ['StripeProcessor']
