"""
Payment gateway adapters.

All gateway calls made by the billing core go through the PaymentGateway
protocol. StripeAdapter is the production implementation.

Usage:
    from billing.adapters import StripeAdapter

    gateway = StripeAdapter()
    event = gateway.verify_webhook_signature(request.body, signature)
"""

from billing.adapters.gateway import Balance, CheckoutSession, ParsedEvent, PaymentGateway
from billing.adapters.stripe_adapter import (
    STRIPE_EVENT_TYPES,
    IdempotencyKeyGenerator,
    StripeAdapter,
)


def get_payment_gateway() -> PaymentGateway:
    """Gateway used by views and tasks; patched in tests."""
    return StripeAdapter()


__all__ = [
    "Balance",
    "CheckoutSession",
    "IdempotencyKeyGenerator",
    "ParsedEvent",
    "PaymentGateway",
    "STRIPE_EVENT_TYPES",
    "StripeAdapter",
    "get_payment_gateway",
]
