"""
Webhook handling for payment gateway events.

Webhooks are verified, deduplicated against the payment_events table and
applied to the ledger synchronously, all in one transaction.

Usage:
    from billing.webhooks.views import payment_events_webhook
"""

from billing.webhooks.handlers import dispatch_event, register_handler
from billing.webhooks.idempotency import EventIdempotencyGuard

__all__ = [
    "EventIdempotencyGuard",
    "dispatch_event",
    "register_handler",
]
