"""
Event idempotency guard.

Gateways deliver webhooks at least once. The guard makes processing
exactly-once by inserting the event into the payment_events table (unique
on gateway_event_id) in the same transaction as the ledger mutation:

    BEGIN
      SAVEPOINT; INSERT payment_event   -- IntegrityError => duplicate, stop
      handler(event)                    -- ledger mutations
    COMMIT

If the handler raises, the insert rolls back with everything else and the
gateway's retry runs the event again. A crash between insert and mutation
therefore cannot leave a half-applied event.

Usage:
    guard = EventIdempotencyGuard()
    outcome = guard.process(event, lambda payment_event: dispatch_event(event, payment_event, services))
    if outcome.duplicate:
        return HttpResponse("Already processed", status=200)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from django.db import IntegrityError, transaction

from billing.models import PaymentEvent, Subscription

if TYPE_CHECKING:
    from billing.adapters.gateway import ParsedEvent

logger = logging.getLogger(__name__)


@dataclass
class GuardOutcome:
    """Result of passing one event through the guard."""

    duplicate: bool
    payment_event: PaymentEvent | None = None
    result: Any = None


class EventIdempotencyGuard:
    """Deduplicates gateway events against the payment_events table."""

    def process(
        self,
        event: ParsedEvent,
        handler: Callable[[PaymentEvent], Any],
    ) -> GuardOutcome:
        """
        Record ``event`` and run ``handler`` in one transaction.

        Returns:
            GuardOutcome; ``duplicate`` is True when the event id was
            already recorded and the handler did not run

        Raises:
            Whatever the handler raises, after rolling back the insert
        """
        with transaction.atomic():
            payment_event = self.record(event)
            if payment_event is None:
                logger.info(
                    "Duplicate gateway event discarded",
                    extra={"gateway_event_id": event.event_id, "event_type": event.event_type},
                )
                return GuardOutcome(duplicate=True)

            result = handler(payment_event)

        return GuardOutcome(duplicate=False, payment_event=payment_event, result=result)

    def record(self, event: ParsedEvent) -> PaymentEvent | None:
        """
        Insert the event inside a savepoint.

        Returns:
            The new PaymentEvent, or None if the event id already exists
        """
        subscription = None
        if event.gateway_subscription_id:
            subscription = Subscription.objects.filter(
                gateway_subscription_id=event.gateway_subscription_id
            ).first()

        try:
            with transaction.atomic():
                return PaymentEvent.objects.create(
                    gateway_event_id=event.event_id,
                    event_type=event.event_type,
                    gateway_event_type=event.gateway_event_type,
                    subscription=subscription,
                    gateway_payment_id=event.gateway_payment_id or "",
                    amount_cents=event.amount_cents,
                    fee_cents=event.fee_cents,
                    currency=event.currency,
                    occurred_at=event.occurred_at,
                    payload=event.payload,
                )
        except IntegrityError:
            if PaymentEvent.objects.filter(gateway_event_id=event.event_id).exists():
                return None
            raise

    @staticmethod
    def is_recorded(gateway_event_id: str) -> bool:
        return PaymentEvent.objects.filter(gateway_event_id=gateway_event_id).exists()
