"""
Subscription state machine service.

Applies events to subscriptions: looks up the edge in the transition table,
validates it against the model's django-fsm method, turns the edge's
effects into column changes and hands them to the ledger as one
conditional update. Account-level effects (overdue marker, suspension
lift, commission posting) follow in the same transaction.

Webhooks, compliance jobs and user actions all go through apply(); nothing
else changes a subscription's state.

Ordering rules checked before a transition is evaluated:
    1. charge_succeeded for an invoice that already has a commission record
       is a replay and does nothing.
    2. Gateway events older than the row's last_event_at are stale and do
       nothing. Equal timestamps are applied.
    3. Pairs missing from the table are logged and ignored (user actions
       raise InvalidStateTransitionError instead).

Usage:
    from billing.services.lifecycle import SubscriptionStateMachine, TransitionContext

    machine = SubscriptionStateMachine(ledger=SubscriptionLedger(), gateway=StripeAdapter())
    with transaction.atomic():
        subscription = ledger.get(subscription_id, for_update=True)
        result = machine.apply(
            subscription,
            SubscriptionEvent.CHARGE_FAILED,
            TransitionContext(occurred_at=event.occurred_at, from_gateway=True),
        )
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.db import transaction
from django.utils import timezone
from django_fsm import TransitionNotAllowed

from billing.adapters.stripe_adapter import IdempotencyKeyGenerator
from billing.exceptions import GatewayError, InvalidStateTransitionError, InvariantViolation
from billing.state_machines.states import SubscriptionEvent, SubscriptionState
from billing.state_machines.transitions import Effect, Transition, resolve_transition
from core.exceptions import ConflictError
from core.services import BaseService

if TYPE_CHECKING:
    from billing.adapters.gateway import ParsedEvent, PaymentGateway
    from billing.ledger.services import SubscriptionLedger
    from billing.models import CommissionRecord, PaymentEvent, Subscription


logger = logging.getLogger(__name__)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class TransitionContext:
    """
    Facts that accompany an event.

    Attributes:
        occurred_at: Event time; gateway time for webhooks, clock time otherwise
        from_gateway: Gateway events take part in last_event_at ordering
        payment_event: Stored PaymentEvent, required for commission posting
        gateway_payment_id: Invoice id, used for the replay check
        amount_cents / fee_cents / currency: Money reported with a charge
        period_end: Current period end reported by the gateway
        cancel_at_period_end: Cancel flag reported by the gateway
        ended_at: When the gateway ended the subscription
        new_gateway_subscription_id: Replacement gateway subscription on resume
    """

    occurred_at: datetime
    from_gateway: bool = False
    payment_event: PaymentEvent | None = None
    gateway_payment_id: str | None = None
    amount_cents: int = 0
    fee_cents: int = 0
    currency: str = "usd"
    period_end: datetime | None = None
    cancel_at_period_end: bool | None = None
    ended_at: datetime | None = None
    new_gateway_subscription_id: str | None = None

    @classmethod
    def from_event(
        cls,
        event: ParsedEvent,
        payment_event: PaymentEvent | None = None,
    ) -> TransitionContext:
        return cls(
            occurred_at=event.occurred_at,
            from_gateway=True,
            payment_event=payment_event,
            gateway_payment_id=event.gateway_payment_id,
            amount_cents=event.amount_cents,
            fee_cents=event.fee_cents,
            currency=event.currency,
            period_end=event.period_end,
            cancel_at_period_end=event.cancel_at_period_end,
            ended_at=event.ended_at,
        )


class Outcome:
    APPLIED = "applied"
    IGNORED = "ignored"
    STALE = "stale"
    REPLAY = "replay"


@dataclass
class ApplyResult:
    """What apply() did with one event."""

    outcome: str
    subscription: Subscription
    transition: Transition | None = None
    commission: CommissionRecord | None = None
    chained: list[ApplyResult] = field(default_factory=list)

    @property
    def applied(self) -> bool:
        return self.outcome == Outcome.APPLIED

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcome": self.outcome,
            "subscription_id": str(self.subscription.pk),
            "state": str(self.subscription.state),
            "commission_id": str(self.commission.pk) if self.commission else None,
            "chained": [result.to_dict() for result in self.chained],
        }


# =============================================================================
# State Machine
# =============================================================================


class SubscriptionStateMachine(BaseService):
    """
    Applies events to subscriptions through the transition table.

    Collaborators are injected: ``ledger`` persists rows, ``gateway`` is
    used by the user actions (cancel, resume) and to cancel replaced gateway
    subscriptions, and ``clock`` supplies the time for events that do not
    carry one.
    """

    def __init__(
        self,
        ledger: SubscriptionLedger,
        gateway: PaymentGateway | None = None,
        clock: Callable[[], datetime] = timezone.now,
        grace_period_days: int | None = None,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.clock = clock
        self.grace_period = timedelta(
            days=grace_period_days
            if grace_period_days is not None
            else settings.SUBSCRIBER_GRACE_PERIOD_DAYS
        )

    # =========================================================================
    # Event application
    # =========================================================================

    def apply(
        self,
        subscription: Subscription,
        event: str,
        context: TransitionContext,
        strict: bool = False,
    ) -> ApplyResult:
        """
        Apply one event to a subscription.

        Must run inside a transaction; webhook callers hold a row lock on
        ``subscription``.

        Args:
            subscription: Row as read by the caller
            event: SubscriptionEvent value
            context: Event facts
            strict: Raise instead of ignoring an illegal (state, event) pair

        Returns:
            ApplyResult describing the outcome

        Raises:
            InvalidStateTransitionError: strict and the pair is not legal
            StaleRecordError: The row changed since it was read
            InvariantViolation: Table and model disagree, or a commission
                split does not balance
        """
        logger = self.get_logger()
        log_context = {
            "subscription_id": str(subscription.pk),
            "state": str(subscription.state),
            "event": str(event),
            "occurred_at": context.occurred_at.isoformat(),
        }

        if event == SubscriptionEvent.CHARGE_SUCCEEDED and self.ledger.has_commission_for_payment(
            context.gateway_payment_id
        ):
            logger.info(
                "Charge already posted, skipping replay",
                extra={**log_context, "gateway_payment_id": context.gateway_payment_id},
            )
            return ApplyResult(outcome=Outcome.REPLAY, subscription=subscription)

        if (
            context.from_gateway
            and subscription.last_event_at is not None
            and context.occurred_at < subscription.last_event_at
        ):
            logger.info(
                "Stale gateway event ignored",
                extra={**log_context, "last_event_at": subscription.last_event_at.isoformat()},
            )
            return ApplyResult(outcome=Outcome.STALE, subscription=subscription)

        transition = resolve_transition(subscription.state, event)
        if transition is None:
            if strict:
                raise InvalidStateTransitionError(
                    f"Cannot {event} a subscription in state {subscription.state}",
                    details={"subscription_id": str(subscription.pk), "state": str(subscription.state)},
                )
            logger.info("No transition for event, ignoring", extra=log_context)
            return ApplyResult(outcome=Outcome.IGNORED, subscription=subscription)

        expected_state = subscription.state
        expected_version = subscription.version

        if transition.fsm_method:
            try:
                getattr(subscription, transition.fsm_method)()
            except TransitionNotAllowed as e:
                logger.error(
                    "Transition table and model disagree",
                    extra={**log_context, "fsm_method": transition.fsm_method},
                )
                raise InvariantViolation(
                    "Model refused a transition the table allows",
                    details={**log_context, "fsm_method": transition.fsm_method},
                ) from e

        changes = self._column_changes(subscription, transition, context)
        if context.from_gateway:
            changes["last_event_at"] = context.occurred_at

        updated = self.ledger.commit(subscription, expected_state, expected_version, changes)
        result = ApplyResult(outcome=Outcome.APPLIED, subscription=updated, transition=transition)

        result.commission = self._apply_account_effects(updated, transition, context)

        logger.info(
            "Subscription transition applied",
            extra={
                **log_context,
                "target": str(transition.target),
                "effects": [effect.value for effect in transition.effects],
                "version": updated.version,
            },
        )

        if (
            event == SubscriptionEvent.SUBSCRIPTION_DELETED
            and updated.state == SubscriptionState.CANCEL_PENDING
            and updated.current_period_end is not None
            and updated.current_period_end <= context.occurred_at
        ):
            chained = self.apply(
                updated,
                SubscriptionEvent.PERIOD_ENDED,
                TransitionContext(occurred_at=context.occurred_at),
            )
            result.chained.append(chained)
            result.subscription = chained.subscription

        return result

    def _column_changes(
        self,
        subscription: Subscription,
        transition: Transition,
        context: TransitionContext,
    ) -> dict[str, Any]:
        """Translate row-level effects into column updates."""
        at = context.occurred_at
        changes: dict[str, Any] = {}

        for effect in transition.effects:
            if effect == Effect.SYNC_PERIOD and context.period_end is not None:
                changes["current_period_end"] = context.period_end
            elif effect == Effect.SYNC_CANCEL_FLAG and context.cancel_at_period_end is not None:
                changes["cancel_at_period_end"] = context.cancel_at_period_end
            elif effect == Effect.CLEAR_GRACE_DEADLINE:
                changes["grace_period_ends_at"] = None
            elif effect == Effect.START_GRACE_PERIOD:
                if subscription.grace_period_ends_at is None:
                    changes["grace_period_ends_at"] = at + self.grace_period
            elif effect == Effect.RECORD_FAILURE:
                changes["payment_failure_count"] = subscription.payment_failure_count + 1
                changes["last_payment_failure_at"] = at
            elif effect == Effect.RESET_FAILURES:
                changes["payment_failure_count"] = 0
            elif effect == Effect.SUSPEND_ACCESS:
                changes["access_suspended"] = True
                changes["access_suspended_at"] = subscription.access_suspended_at or at
            elif effect == Effect.RESTORE_ACCESS:
                changes["access_suspended"] = False
                changes["access_suspended_at"] = None
            elif effect == Effect.SET_CANCEL_FLAG:
                changes["cancel_at_period_end"] = True
            elif effect == Effect.CLEAR_CANCEL_FLAG:
                changes["cancel_at_period_end"] = False
            elif effect == Effect.MARK_GATEWAY_ENDED:
                if subscription.gateway_ended_at is None:
                    changes["gateway_ended_at"] = context.ended_at or at
            elif effect == Effect.REBIND_GATEWAY_SUBSCRIPTION:
                if context.new_gateway_subscription_id:
                    changes.update(self.ledger.rebind_columns(context.new_gateway_subscription_id))
            elif effect == Effect.RECORD_CANCELLATION:
                changes["cancelled_at"] = at

        return changes

    def _apply_account_effects(
        self,
        subscription: Subscription,
        transition: Transition,
        context: TransitionContext,
    ) -> CommissionRecord | None:
        commission = None
        effects = transition.effects

        if Effect.MARK_PAYER_OVERDUE in effects:
            self.ledger.mark_payer_overdue(subscription.subscriber_id, context.occurred_at)

        if Effect.RESTORE_PAYER_ACCOUNT in effects:
            self.ledger.restore_payer_account(subscription.subscriber_id)

        if Effect.POST_COMMISSION in effects and context.payment_event is not None:
            commission = self.ledger.post_commission(
                subscription,
                context.payment_event,
                gross_cents=context.amount_cents,
                fee_cents=context.fee_cents,
                currency=context.currency,
            )

        return commission

    # =========================================================================
    # Gateway rebinding
    # =========================================================================

    def replace_gateway_subscription(
        self,
        subscription: Subscription,
        gateway_subscription_id: str,
    ) -> Subscription:
        """
        Move a subscription onto a new gateway subscription.

        Must run inside the caller's transaction with the row locked. The
        state is unchanged; the caller applies the event that brought the
        new gateway subscription. A previous gateway subscription that is
        still running is cancelled at period end once the transaction
        commits.
        """
        previous = subscription.gateway_subscription_id
        still_running = subscription.gateway_ended_at is None

        updated = self.ledger.rebind_gateway_subscription(subscription, gateway_subscription_id)

        if still_running and previous != gateway_subscription_id:
            log_context = {"subscription_id": str(subscription.pk)}
            transaction.on_commit(
                lambda: cancel_replaced_subscription(self.gateway, previous, log_context)
            )
        return updated

    # =========================================================================
    # User actions
    # =========================================================================

    def request_cancel(self, subscription_id) -> Subscription:
        """
        Cancel at period end on behalf of the subscriber.

        The gateway is told first, with no transaction open; the local flag
        follows. Already-flagged subscriptions are returned unchanged.

        Raises:
            InvalidStateTransitionError: Not cancellable in its state
            TransientGatewayError / PermanentGatewayError: Gateway call failed
        """
        subscription = self.ledger.get(subscription_id)
        if resolve_transition(subscription.state, SubscriptionEvent.CANCEL_REQUESTED) is None:
            raise InvalidStateTransitionError(
                f"Cannot cancel a subscription in state {subscription.state}",
                details={"subscription_id": str(subscription.pk), "state": str(subscription.state)},
            )
        if subscription.cancel_at_period_end:
            return subscription

        if subscription.gateway_ended_at is None:
            self._require_gateway().cancel_at_period_end(subscription.gateway_subscription_id)

        with transaction.atomic():
            subscription = self.ledger.get(subscription_id, for_update=True)
            result = self.apply(
                subscription,
                SubscriptionEvent.CANCEL_REQUESTED,
                TransitionContext(occurred_at=self.clock()),
                strict=True,
            )
        return result.subscription

    def request_resume(self, subscription_id) -> Subscription:
        """
        Undo a cancellation, or come back during the grace period.

        A grace-period subscription whose gateway subscription has already
        ended gets a new gateway subscription before returning to ACTIVE.

        Raises:
            InvalidStateTransitionError: Not resumable in its state
            ConflictError: The grace period deadline has passed
            TransientGatewayError / PermanentGatewayError: Gateway call failed
        """
        now = self.clock()
        subscription = self.ledger.get(subscription_id)
        if resolve_transition(subscription.state, SubscriptionEvent.RESUME_REQUESTED) is None:
            raise InvalidStateTransitionError(
                f"Cannot resume a subscription in state {subscription.state}",
                details={"subscription_id": str(subscription.pk), "state": str(subscription.state)},
            )
        if (
            subscription.state == SubscriptionState.GRACE_PERIOD
            and subscription.grace_period_ends_at is not None
            and subscription.grace_period_ends_at <= now
        ):
            raise ConflictError(
                "The grace period has ended",
                error_code="GRACE_PERIOD_ENDED",
                details={"subscription_id": str(subscription.pk)},
            )

        new_gateway_subscription_id = None
        gateway = self._require_gateway()
        if subscription.gateway_ended_at is not None:
            payer = subscription.subscriber.paying_account
            new_gateway_subscription_id = gateway.create_subscription(
                customer_id=payer.gateway_customer_id,
                price_id=subscription.gateway_price_id or settings.STRIPE_SUBSCRIBER_PRICE_ID,
                metadata={
                    "subscription_id": str(subscription.pk),
                    "subscriber_account_id": str(subscription.subscriber_id),
                    "deliverable_id": subscription.deliverable_id,
                },
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "resume_subscription", subscription.pk, subscription.version
                ),
            )
        elif subscription.cancel_at_period_end:
            gateway.resume_subscription(subscription.gateway_subscription_id)

        with transaction.atomic():
            subscription = self.ledger.get(subscription_id, for_update=True)
            result = self.apply(
                subscription,
                SubscriptionEvent.RESUME_REQUESTED,
                TransitionContext(
                    occurred_at=now,
                    new_gateway_subscription_id=new_gateway_subscription_id,
                ),
                strict=True,
            )
        return result.subscription

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise InvariantViolation("State machine has no gateway for a user action")
        return self.gateway


def cancel_replaced_subscription(
    gateway: PaymentGateway | None,
    gateway_subscription_id: str,
    log_context: dict[str, Any],
) -> bool:
    """
    Stop a gateway subscription nobody should be billed for any more.

    Runs after commit, when the webhook that replaced it is already
    acknowledged, so a gateway failure is logged for follow-up instead of
    raised.
    """
    log_context = {**log_context, "gateway_subscription_id": gateway_subscription_id}
    if gateway is None:
        logger.error("No gateway to cancel replaced subscription", extra=log_context)
        return False
    try:
        gateway.cancel_at_period_end(gateway_subscription_id)
    except GatewayError:
        logger.error("Could not cancel replaced gateway subscription", extra=log_context, exc_info=True)
        return False
    logger.info("Cancelled replaced gateway subscription", extra=log_context)
    return True
