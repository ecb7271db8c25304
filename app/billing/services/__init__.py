"""
Billing services.

- SubscriptionStateMachine: applies events to subscriptions
- BillingTakeoverService: payer takeover workflow
- AccountStandingService: billing status for account holders
"""

from billing.services.lifecycle import (
    ApplyResult,
    Outcome,
    SubscriptionStateMachine,
    TransitionContext,
)
from billing.services.standing import AccountStandingService
from billing.services.takeover import BillingTakeoverService

__all__ = [
    "AccountStandingService",
    "ApplyResult",
    "BillingTakeoverService",
    "Outcome",
    "SubscriptionStateMachine",
    "TransitionContext",
]
