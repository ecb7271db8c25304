"""
Payment gateway interface.

The ledger, the state machine, the takeover workflow and the compliance
jobs only talk to the gateway through the PaymentGateway protocol. The
production implementation is StripeAdapter; tests pass a Mock or any
object with the same methods.

Available Types:
    PaymentGateway: Operations the billing core needs from the gateway
    ParsedEvent: Verified, normalized webhook notification
    Balance: Connected-account balance snapshot
    CheckoutSession: Hosted checkout reference returned to the client

Usage:
    from billing.adapters.gateway import PaymentGateway

    def cancel(gateway: PaymentGateway, subscription):
        gateway.cancel_at_period_end(subscription.gateway_subscription_id)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class ParsedEvent:
    """
    A gateway notification after signature verification and normalization.

    Attributes:
        event_id: Gateway event id, unique per delivery subject (evt_xxx)
        gateway_event_type: Raw gateway type (e.g. 'invoice.payment_failed')
        event_type: Normalized PaymentEventType value
        occurred_at: When the gateway created the event (timezone-aware)
        gateway_subscription_id: Subscription the event refers to, if any
        gateway_payment_id: Invoice or payment id, if any
        customer_id: Gateway customer id, if any
        amount_cents: Amount paid or due in the smallest currency unit
        fee_cents: Processing fee known at notification time
        currency: ISO 4217 currency code
        period_end: End of the billing period the event covers
        cancel_at_period_end: Gateway cancel flag, for subscription objects
        ended_at: When the gateway subscription ended, if it has
        metadata: Merged metadata of the object and its subscription
        checkout_session_id: Checkout session id for checkout events
        payload: The full verified event body
    """

    event_id: str
    gateway_event_type: str
    event_type: str
    occurred_at: datetime
    gateway_subscription_id: str | None = None
    gateway_payment_id: str | None = None
    customer_id: str | None = None
    amount_cents: int = 0
    fee_cents: int = 0
    currency: str = "usd"
    period_end: datetime | None = None
    cancel_at_period_end: bool | None = None
    ended_at: datetime | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    checkout_session_id: str | None = None
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Balance:
    """
    Connected-account balance in the account's default currency.

    Attributes:
        available_cents: Funds available for payout
        pending_cents: Funds not yet available
        currency: ISO 4217 currency code
    """

    available_cents: int
    pending_cents: int
    currency: str = "usd"

    def to_dict(self) -> dict[str, Any]:
        return {
            "available_cents": self.available_cents,
            "pending_cents": self.pending_cents,
            "currency": self.currency,
        }


@dataclass(frozen=True)
class CheckoutSession:
    """Hosted checkout created for a payer to confirm a payment method."""

    id: str
    url: str
    customer_id: str | None = None


# =============================================================================
# Protocol
# =============================================================================


@runtime_checkable
class PaymentGateway(Protocol):
    """
    Operations the billing core needs from the payment gateway.

    Every call has a bounded timeout. Implementations raise
    TransientGatewayError for timeouts, rate limits and gateway-side
    failures, PermanentGatewayError for rejected requests, and
    SignatureError from verify_webhook_signature.
    """

    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> str:
        """Create a gateway subscription and return its id."""
        ...

    def cancel_at_period_end(self, gateway_subscription_id: str) -> None:
        """Ask the gateway to stop renewing at the end of the current period."""
        ...

    def resume_subscription(self, gateway_subscription_id: str) -> None:
        """Clear a pending cancel-at-period-end on a live subscription."""
        ...

    def verify_webhook_signature(
        self,
        raw_body: bytes,
        signature_header: str,
    ) -> ParsedEvent:
        """Verify a webhook delivery and return the normalized event."""
        ...

    def retrieve_account_balance(self, connected_account_id: str) -> Balance:
        """Fetch the balance of a provider's connected account."""
        ...

    def create_checkout_session(
        self,
        customer_id: str | None,
        price_id: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> CheckoutSession:
        """Open a hosted checkout that creates a subscription on completion."""
        ...
