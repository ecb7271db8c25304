"""
Stripe implementation of the PaymentGateway protocol.

All Stripe calls made by the billing core go through this adapter so that
timeouts, error translation, idempotency keys and logging are handled in
one place.

Features:
- Bounded timeout on every API call (STRIPE_API_TIMEOUT_SECONDS)
- Stripe SDK errors translated to TransientGatewayError / PermanentGatewayError
- Structured logging with timing
- Webhook verification and normalization into ParsedEvent

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- CHECKOUT_SUCCESS_URL / CHECKOUT_CANCEL_URL: Hosted checkout redirects

Usage:
    from billing.adapters import StripeAdapter

    gateway = StripeAdapter()
    event = gateway.verify_webhook_signature(request.body, signature)
    gateway.cancel_at_period_end("sub_123")
"""

from __future__ import annotations

import hashlib
import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime
from datetime import timezone as dt_timezone
from typing import Any, TypeVar

import stripe
from django.conf import settings

from billing.adapters.gateway import Balance, CheckoutSession, ParsedEvent
from billing.exceptions import (
    PermanentGatewayError,
    SignatureError,
    TransientGatewayError,
)
from billing.state_machines.states import PaymentEventType
from core.exceptions import ValidationError

T = TypeVar("T")

# Gateway event type -> normalized PaymentEventType
STRIPE_EVENT_TYPES: dict[str, str] = {
    "invoice.payment_succeeded": PaymentEventType.CHARGE_SUCCEEDED,
    "invoice.paid": PaymentEventType.CHARGE_SUCCEEDED,
    "invoice.payment_failed": PaymentEventType.CHARGE_FAILED,
    "customer.subscription.updated": PaymentEventType.SUBSCRIPTION_UPDATED,
    "customer.subscription.deleted": PaymentEventType.SUBSCRIPTION_DELETED,
    "checkout.session.completed": PaymentEventType.CHECKOUT_COMPLETED,
}


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    Example:
        key = IdempotencyKeyGenerator.generate(
            operation="takeover_checkout",
            entity_id=takeover.id,
        )
        # "takeover_checkout:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
    ) -> str:
        entity_str = str(entity_id)
        hash_input = f"{operation}:{entity_str}:{attempt}:{settings.SECRET_KEY}"
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]

        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Payload helpers
# =============================================================================


def _timestamp(value: Any) -> datetime | None:
    """Convert a Stripe unix timestamp to an aware UTC datetime."""
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=dt_timezone.utc)


def _object_id(value: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


def _dig(data: dict[str, Any], *keys: str) -> Any:
    current: Any = data
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _first_line(data: dict[str, Any], container: str) -> dict[str, Any]:
    items = _dig(data, container, "data") or []
    return items[0] if items else {}


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    PaymentGateway backed by the Stripe API.

    Instances hold no mutable state and are safe to share between
    requests and Celery workers.

    Usage:
        gateway = StripeAdapter()
        subscription_id = gateway.create_subscription("cus_123", "price_123", {})
    """

    def __init__(
        self,
        api_key: str | None = None,
        webhook_secret: str | None = None,
        timeout: int | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.STRIPE_WEBHOOK_SECRET
        )
        self.timeout = timeout or getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)

    # =========================================================================
    # Configuration
    # =========================================================================

    def _configure_stripe(self) -> None:
        """Configure the Stripe client with API key and timeout."""
        stripe.api_key = self.api_key
        stripe.default_http_client = stripe.RequestsClient(timeout=self.timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get logger for this adapter."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    def _execute(
        self,
        operation: str,
        log_context: dict[str, Any],
        call: Callable[[], T],
    ) -> T:
        """Run one Stripe call with timing, logging and error translation."""
        self._configure_stripe()
        logger = self.get_logger()
        log_context = {"operation": operation, **log_context}

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            result = call()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            self._handle_stripe_error(e, log_context, duration_ms)
            raise

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Stripe operation completed",
            extra={**log_context, "duration_ms": duration_ms},
        )
        return result

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def create_subscription(
        self,
        customer_id: str,
        price_id: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> str:
        """
        Create a Stripe subscription for an existing customer.

        Returns:
            The new gateway subscription id (sub_xxx)

        Raises:
            TransientGatewayError: Timeout, rate limit or Stripe outage
            PermanentGatewayError: Card declined or invalid request
        """
        subscription = self._execute(
            "create_subscription",
            {"customer_id": customer_id, "price_id": price_id},
            lambda: stripe.Subscription.create(
                customer=customer_id,
                items=[{"price": price_id}],
                metadata=metadata,
                idempotency_key=idempotency_key,
            ),
        )
        return subscription.id

    def cancel_at_period_end(self, gateway_subscription_id: str) -> None:
        """Stop renewal at the end of the current period."""
        self._execute(
            "cancel_at_period_end",
            {"gateway_subscription_id": gateway_subscription_id},
            lambda: stripe.Subscription.modify(
                gateway_subscription_id,
                cancel_at_period_end=True,
            ),
        )

    def resume_subscription(self, gateway_subscription_id: str) -> None:
        """Undo a pending cancel-at-period-end."""
        self._execute(
            "resume_subscription",
            {"gateway_subscription_id": gateway_subscription_id},
            lambda: stripe.Subscription.modify(
                gateway_subscription_id,
                cancel_at_period_end=False,
            ),
        )

    # =========================================================================
    # Checkout & Balances
    # =========================================================================

    def create_checkout_session(
        self,
        customer_id: str | None,
        price_id: str,
        metadata: dict[str, str],
        idempotency_key: str | None = None,
    ) -> CheckoutSession:
        """
        Create a hosted subscription checkout.

        The metadata is copied onto the resulting subscription so invoices
        it produces carry it back through webhooks.
        """
        params: dict[str, Any] = {
            "mode": "subscription",
            "line_items": [{"price": price_id, "quantity": 1}],
            "metadata": metadata,
            "subscription_data": {"metadata": metadata},
            "success_url": settings.CHECKOUT_SUCCESS_URL,
            "cancel_url": settings.CHECKOUT_CANCEL_URL,
            "idempotency_key": idempotency_key,
        }
        if customer_id:
            params["customer"] = customer_id

        session = self._execute(
            "create_checkout_session",
            {"customer_id": customer_id, "price_id": price_id},
            lambda: stripe.checkout.Session.create(**params),
        )
        return CheckoutSession(id=session.id, url=session.url, customer_id=customer_id)

    def retrieve_account_balance(self, connected_account_id: str) -> Balance:
        """
        Fetch a connected account's balance.

        Only amounts in the currency of the first available entry are summed;
        providers are paid out in a single currency.
        """
        balance = self._execute(
            "retrieve_account_balance",
            {"connected_account_id": connected_account_id},
            lambda: stripe.Balance.retrieve(stripe_account=connected_account_id),
        )
        data = balance.to_dict()
        available = data.get("available") or []
        pending = data.get("pending") or []
        currency = available[0]["currency"] if available else "usd"

        return Balance(
            available_cents=sum(
                entry["amount"] for entry in available if entry["currency"] == currency
            ),
            pending_cents=sum(
                entry["amount"] for entry in pending if entry["currency"] == currency
            ),
            currency=currency,
        )

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    def verify_webhook_signature(
        self,
        raw_body: bytes,
        signature_header: str,
    ) -> ParsedEvent:
        """
        Verify and normalize a Stripe webhook delivery.

        Raises:
            SignatureError: Missing or invalid signature
            ValidationError: Body is not a well-formed Stripe event
        """
        if not signature_header:
            raise SignatureError("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(
                raw_body,
                signature_header,
                self.webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            raise SignatureError(
                "Invalid webhook signature",
                details={"error": str(e)},
            )
        except ValueError as e:
            raise ValidationError(
                "Malformed webhook payload",
                error_code="INVALID_PAYLOAD",
                details={"error": str(e)},
            )

        return self.parse_event(event.to_dict())

    @staticmethod
    def parse_event(payload: dict[str, Any]) -> ParsedEvent:
        """
        Normalize a verified Stripe event body.

        Unknown event types are returned as UNSUPPORTED with only the
        envelope populated.

        Raises:
            ValidationError: Envelope fields (id, type, created) are missing
        """
        event_id = payload.get("id")
        gateway_event_type = payload.get("type")
        created = payload.get("created")
        if not event_id or not gateway_event_type or created is None:
            raise ValidationError(
                "Webhook payload is missing id, type or created",
                error_code="INVALID_PAYLOAD",
            )

        event_type = STRIPE_EVENT_TYPES.get(gateway_event_type, PaymentEventType.UNSUPPORTED)
        envelope = {
            "event_id": event_id,
            "gateway_event_type": gateway_event_type,
            "event_type": event_type,
            "occurred_at": _timestamp(created),
            "payload": payload,
        }
        obj = _dig(payload, "data", "object") or {}

        if event_type in (PaymentEventType.CHARGE_SUCCEEDED, PaymentEventType.CHARGE_FAILED):
            return ParsedEvent(**envelope, **_parse_invoice(obj, event_type))
        if event_type in (
            PaymentEventType.SUBSCRIPTION_UPDATED,
            PaymentEventType.SUBSCRIPTION_DELETED,
        ):
            return ParsedEvent(**envelope, **_parse_subscription(obj))
        if event_type == PaymentEventType.CHECKOUT_COMPLETED:
            return ParsedEvent(**envelope, **_parse_checkout_session(obj))
        return ParsedEvent(**envelope)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe exceptions to gateway exceptions.

        Raises:
            PermanentGatewayError: Card, invalid request or authentication errors
            TransientGatewayError: Rate limits, connection errors, Stripe 5xx
                and anything unrecognised
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, stripe.CardError):
            logger.warning(
                "Card error from Stripe",
                extra={**log_context, "decline_code": getattr(error, "decline_code", None)},
            )
            raise PermanentGatewayError(
                str(error.user_message or error),
                gateway_code=error.code,
                error_code="CARD_DECLINED",
            )

        elif isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            raise PermanentGatewayError(str(error), gateway_code=error.code)

        elif isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise TransientGatewayError(
                "Stripe rate limit exceeded. Please retry.",
                gateway_code="rate_limit",
            )

        elif isinstance(error, stripe.APIConnectionError):
            # Timeouts surface here as well
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            raise TransientGatewayError(
                "Could not connect to Stripe. Please retry.",
                gateway_code="api_connection_error",
            )

        elif isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            raise PermanentGatewayError(
                "Stripe authentication failed",
                gateway_code="authentication_error",
            )

        elif isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise TransientGatewayError(
                "Stripe service error. Please retry.",
                gateway_code="api_error",
            )

        else:
            logger.error(
                f"Unexpected error from Stripe: {type(error).__name__}",
                extra=log_context,
                exc_info=True,
            )
            raise TransientGatewayError(
                f"Unexpected Stripe error: {error}",
                gateway_code="unknown_error",
            )


# =============================================================================
# Object parsers
# =============================================================================


def _parse_invoice(invoice: dict[str, Any], event_type: str) -> dict[str, Any]:
    subscription_details = invoice.get("subscription_details") or _dig(
        invoice, "parent", "subscription_details"
    ) or {}
    metadata = {
        **(subscription_details.get("metadata") or {}),
        **(invoice.get("metadata") or {}),
    }

    if event_type == PaymentEventType.CHARGE_SUCCEEDED:
        amount = invoice.get("amount_paid") or invoice.get("amount_due") or 0
    else:
        amount = invoice.get("amount_due") or 0

    line = _first_line(invoice, "lines")
    period_end = _timestamp(_dig(line, "period", "end")) or _timestamp(invoice.get("period_end"))

    return {
        "gateway_subscription_id": _object_id(invoice.get("subscription"))
        or _object_id(subscription_details.get("subscription")),
        "gateway_payment_id": invoice.get("id"),
        "customer_id": _object_id(invoice.get("customer")),
        "amount_cents": int(amount),
        "currency": invoice.get("currency") or "usd",
        "period_end": period_end,
        "metadata": metadata,
    }


def _parse_subscription(subscription: dict[str, Any]) -> dict[str, Any]:
    item = _first_line(subscription, "items")
    period_end = _timestamp(subscription.get("current_period_end")) or _timestamp(
        item.get("current_period_end")
    )
    amount = _dig(item, "price", "unit_amount") or 0

    return {
        "gateway_subscription_id": subscription.get("id"),
        "customer_id": _object_id(subscription.get("customer")),
        "amount_cents": int(amount),
        "currency": subscription.get("currency") or "usd",
        "period_end": period_end,
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        "ended_at": _timestamp(subscription.get("ended_at")),
        "metadata": dict(subscription.get("metadata") or {}),
    }


def _parse_checkout_session(session: dict[str, Any]) -> dict[str, Any]:
    return {
        "gateway_subscription_id": _object_id(session.get("subscription")),
        "customer_id": _object_id(session.get("customer")),
        "amount_cents": int(session.get("amount_total") or 0),
        "currency": session.get("currency") or "usd",
        "metadata": dict(session.get("metadata") or {}),
        "checkout_session_id": session.get("id"),
    }
