"""
State machine definitions for billing models.

- states: TextChoices enums for subscriptions, payment events, takeovers
- transitions: the pure (state, event) -> Transition table
"""

from billing.state_machines.states import (
    ENTITLED_STATES,
    CommissionStatus,
    PaymentEventType,
    SubscriptionEvent,
    SubscriptionState,
    TakeoverReason,
    TakeoverState,
    TakeoverType,
)
from billing.state_machines.transitions import (
    TRANSITION_TABLE,
    Effect,
    Transition,
    legal_events,
    resolve_transition,
)

__all__ = [
    "ENTITLED_STATES",
    "CommissionStatus",
    "PaymentEventType",
    "SubscriptionEvent",
    "SubscriptionState",
    "TakeoverReason",
    "TakeoverState",
    "TakeoverType",
    "TRANSITION_TABLE",
    "Effect",
    "Transition",
    "legal_events",
    "resolve_transition",
]
