"""
Webhook event handlers.

Handlers are registered per normalized PaymentEventType and run inside the
idempotency guard's transaction, after the PaymentEvent insert. Each
resolves the local subscription (locking its row), then hands the event to
the state machine. Takeover payments are routed to the takeover workflow.

Events that cannot be tied to anything local (unknown subscription, no
metadata) are logged and acknowledged: retrying them would not help. A
successful charge is the exception: it raises UnmatchedPaymentError so the
money is never acknowledged without a ledger row.

Usage:
    from billing.webhooks.handlers import WebhookServices, dispatch_event

    services = WebhookServices.build(gateway)
    result = dispatch_event(event, payment_event, services)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError

from accounts.choices import AccountKind
from accounts.models import Account
from billing.exceptions import UnmatchedPaymentError
from billing.ledger.services import SubscriptionLedger
from billing.services.lifecycle import SubscriptionStateMachine, TransitionContext
from billing.services.takeover import BillingTakeoverService
from billing.state_machines.states import PaymentEventType, SubscriptionEvent, SubscriptionState
from core.exceptions import ConflictError, NotFoundError
from core.services import ServiceResult

if TYPE_CHECKING:
    from billing.adapters.gateway import ParsedEvent, PaymentGateway
    from billing.models import PaymentEvent, Subscription


logger = logging.getLogger(__name__)

# Lapsed subscriptions a new checkout for the same deliverable picks up again
RESUBSCRIBABLE_STATES = (SubscriptionState.GRACE_PERIOD, SubscriptionState.SUSPENDED)


@dataclass
class WebhookServices:
    """Collaborators handed to every handler."""

    ledger: SubscriptionLedger
    state_machine: SubscriptionStateMachine
    takeovers: BillingTakeoverService

    @classmethod
    def build(cls, gateway: PaymentGateway) -> WebhookServices:
        ledger = SubscriptionLedger()
        return cls(
            ledger=ledger,
            state_machine=SubscriptionStateMachine(ledger=ledger, gateway=gateway),
            takeovers=BillingTakeoverService(ledger=ledger, gateway=gateway),
        )


Handler = Callable[["ParsedEvent", "PaymentEvent", WebhookServices], ServiceResult]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps normalized event types to handler functions
WEBHOOK_HANDLERS: dict[str, Handler] = {}


def register_handler(event_type: str) -> Callable[[Handler], Handler]:
    """
    Decorator to register a webhook event handler.

    Usage:
        @register_handler(PaymentEventType.CHARGE_FAILED)
        def handle_charge_failed(event, payment_event, services) -> ServiceResult:
            ...
    """

    def decorator(func: Handler) -> Handler:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def dispatch_event(
    event: ParsedEvent,
    payment_event: PaymentEvent,
    services: WebhookServices,
) -> ServiceResult:
    """
    Dispatch an event to its handler.

    Unsupported event types have no handler; they are logged and reported
    as success so the gateway stops retrying them.
    """
    handler = WEBHOOK_HANDLERS.get(event.event_type)
    log_context = {
        "gateway_event_id": event.event_id,
        "gateway_event_type": event.gateway_event_type,
    }

    if not handler:
        logger.info(
            f"No handler registered for event type: {event.gateway_event_type}",
            extra=log_context,
        )
        return ServiceResult.success(None)

    logger.info(f"Dispatching {event.event_type} to handler", extra=log_context)
    return handler(event, payment_event, services)


# =============================================================================
# Helpers
# =============================================================================


def _takeover_id(event: ParsedEvent) -> str | None:
    return event.metadata.get("takeover_id") or None


def _find_account(account_id: str, **filters) -> Account | None:
    try:
        return Account.objects.filter(pk=account_id, **filters).first()
    except DjangoValidationError:
        return None


def _resolve_subscription(event: ParsedEvent, ledger: SubscriptionLedger) -> Subscription | None:
    """Find and lock the local subscription an event refers to."""
    if event.gateway_subscription_id:
        subscription = ledger.get_by_gateway_id(event.gateway_subscription_id, for_update=True)
        if subscription is not None:
            return subscription

    subscription_id = event.metadata.get("subscription_id")
    if subscription_id:
        try:
            return ledger.get(subscription_id, for_update=True)
        except NotFoundError:
            return None
    return None


def _create_from_metadata(
    event: ParsedEvent,
    services: WebhookServices,
) -> tuple[Subscription | None, bool]:
    """
    Create the local subscription for a completed checkout.

    Requires subscriber_account_id and deliverable_id in the metadata;
    provider_account_id is optional. A subscriber coming back to a
    deliverable whose subscription lapsed into GRACE_PERIOD or SUSPENDED
    keeps that row; it is moved onto the new gateway subscription.

    Returns:
        (subscription or None, whether a row was created)
    """
    ledger = services.ledger
    subscriber_id = event.metadata.get("subscriber_account_id")
    deliverable_id = event.metadata.get("deliverable_id")
    if not (subscriber_id and deliverable_id and event.gateway_subscription_id):
        return None, False

    log_context = {
        "gateway_event_id": event.event_id,
        "gateway_subscription_id": event.gateway_subscription_id,
    }

    subscriber = _find_account(subscriber_id)
    if subscriber is None:
        logger.warning("Checkout for unknown subscriber account", extra=log_context)
        return None, False

    provider = None
    provider_id = event.metadata.get("provider_account_id")
    if provider_id:
        provider = _find_account(provider_id, kind=AccountKind.PROVIDER)
        if provider is None:
            logger.warning("Checkout names an unknown provider account", extra=log_context)
            return None, False

    try:
        subscription = ledger.create_subscription(
            subscriber=subscriber,
            provider=provider,
            deliverable_id=deliverable_id,
            gateway_subscription_id=event.gateway_subscription_id,
            gateway_price_id=event.metadata.get("price_id", ""),
            amount_cents=event.amount_cents,
            currency=event.currency,
            current_period_end=event.period_end,
            metadata={"created_by_event": event.event_id},
        )
    except ConflictError as e:
        existing = ledger.get_live_for_deliverable(subscriber.pk, deliverable_id, for_update=True)
        if existing is None or existing.state not in RESUBSCRIBABLE_STATES:
            logger.warning(
                "Subscriber already holds a live subscription for this deliverable",
                extra={**log_context, **e.details},
            )
            return None, False

        logger.info(
            "New checkout takes over a lapsed subscription",
            extra={**log_context, "subscription_id": str(existing.pk), "state": str(existing.state)},
        )
        services.state_machine.replace_gateway_subscription(existing, event.gateway_subscription_id)
        return ledger.get(existing.pk, for_update=True), False

    if event.customer_id and not subscriber.gateway_customer_id:
        Account.objects.filter(pk=subscriber.pk, gateway_customer_id="").update(
            gateway_customer_id=event.customer_id
        )
    return ledger.get(subscription.pk, for_update=True), True


def _untracked(event: ParsedEvent) -> ServiceResult:
    logger.warning(
        "Event for a subscription this service does not track",
        extra={
            "gateway_event_id": event.event_id,
            "gateway_subscription_id": event.gateway_subscription_id,
        },
    )
    return ServiceResult.failure("Subscription not tracked", "UNKNOWN_SUBSCRIPTION")


def _apply(
    event: ParsedEvent,
    payment_event: PaymentEvent,
    services: WebhookServices,
    subscription_event: str,
    create_if_missing: bool = False,
) -> ServiceResult:
    subscription = _resolve_subscription(event, services.ledger)
    if subscription is None and create_if_missing:
        subscription, _ = _create_from_metadata(event, services)
    if subscription is None:
        if subscription_event == SubscriptionEvent.CHARGE_SUCCEEDED:
            raise UnmatchedPaymentError(
                "Successful charge for a subscription the ledger cannot place",
                details={
                    "gateway_event_id": event.event_id,
                    "gateway_subscription_id": event.gateway_subscription_id,
                    "gateway_payment_id": event.gateway_payment_id,
                },
            )
        return _untracked(event)

    result = services.state_machine.apply(
        subscription,
        subscription_event,
        TransitionContext.from_event(event, payment_event),
    )
    return ServiceResult.success(result.to_dict())


def _takeover_in_progress(event: ParsedEvent, services: WebhookServices) -> str | None:
    """
    Takeover id of an event the takeover workflow still owns.

    Invoices of a completed takeover keep its id in their metadata. When the
    takeover covered a subscription they are renewals of that rebound
    subscription and go through the state machine.
    """
    takeover_id = _takeover_id(event)
    if takeover_id and not services.takeovers.bills_subscription(takeover_id):
        return takeover_id
    return None


# =============================================================================
# Charge Handlers
# =============================================================================


@register_handler(PaymentEventType.CHARGE_SUCCEEDED)
def handle_charge_succeeded(
    event: ParsedEvent,
    payment_event: PaymentEvent,
    services: WebhookServices,
) -> ServiceResult:
    """
    A recurring charge was paid.

    The first payment of a takeover completes the takeover and then counts
    as a charge on the subscription it covers. Anything else moves the
    subscription to ACTIVE and posts a commission; the first charge of a
    checkout we have not seen yet creates the subscription.
    """
    takeover_id = _takeover_in_progress(event, services)
    if takeover_id:
        result = services.takeovers.complete(takeover_id, event.gateway_subscription_id)
        if not result.success or not result.data["subscription_id"]:
            return result
        charge = _apply(event, payment_event, services, SubscriptionEvent.CHARGE_SUCCEEDED)
        return ServiceResult.success({**result.data, "charge": charge.data})

    return _apply(
        event,
        payment_event,
        services,
        SubscriptionEvent.CHARGE_SUCCEEDED,
        create_if_missing=True,
    )


@register_handler(PaymentEventType.CHARGE_FAILED)
def handle_charge_failed(
    event: ParsedEvent,
    payment_event: PaymentEvent,
    services: WebhookServices,
) -> ServiceResult:
    """A recurring charge failed."""
    takeover_id = _takeover_in_progress(event, services)
    if takeover_id:
        logger.info(
            "Takeover payment failed; takeover stays pending",
            extra={"gateway_event_id": event.event_id, "takeover_id": takeover_id},
        )
        return ServiceResult.success(None)

    return _apply(event, payment_event, services, SubscriptionEvent.CHARGE_FAILED)


# =============================================================================
# Subscription Handlers
# =============================================================================


@register_handler(PaymentEventType.SUBSCRIPTION_UPDATED)
def handle_subscription_updated(
    event: ParsedEvent,
    payment_event: PaymentEvent,
    services: WebhookServices,
) -> ServiceResult:
    """Period and cancel flag changed on the gateway."""
    if _takeover_in_progress(event, services):
        return ServiceResult.success(None)
    return _apply(event, payment_event, services, SubscriptionEvent.SUBSCRIPTION_UPDATED)


@register_handler(PaymentEventType.SUBSCRIPTION_DELETED)
def handle_subscription_deleted(
    event: ParsedEvent,
    payment_event: PaymentEvent,
    services: WebhookServices,
) -> ServiceResult:
    """The gateway ended the subscription."""
    if _takeover_in_progress(event, services):
        return ServiceResult.success(None)
    return _apply(event, payment_event, services, SubscriptionEvent.SUBSCRIPTION_DELETED)


# =============================================================================
# Checkout Handlers
# =============================================================================


@register_handler(PaymentEventType.CHECKOUT_COMPLETED)
def handle_checkout_completed(
    event: ParsedEvent,
    payment_event: PaymentEvent,
    services: WebhookServices,
) -> ServiceResult:
    """
    A hosted checkout finished.

    Subscription checkouts create the local subscription in TRIALING (or
    rebind a lapsed one); the first charge activates it. Takeover checkouts
    only record the new gateway subscription on the takeover.
    """
    takeover_id = _takeover_id(event)
    if takeover_id:
        services.takeovers.record_checkout(takeover_id, event.gateway_subscription_id)
        return ServiceResult.success({"takeover_id": takeover_id})

    existing = _resolve_subscription(event, services.ledger)
    if existing is not None:
        return ServiceResult.success({"subscription_id": str(existing.pk), "created": False})

    subscription, created = _create_from_metadata(event, services)
    if subscription is None:
        return ServiceResult.failure("Checkout metadata incomplete", "UNKNOWN_SUBSCRIPTION")
    return ServiceResult.success({"subscription_id": str(subscription.pk), "created": created})
