"""
Scheduled compliance sweeps.

Two independent daily jobs, each safe to re-run and to run concurrently
with itself and with live webhook traffic:

- Grace-period sweep:
    1. Subscriptions whose grace deadline passed are moved through the state
       machine: CANCELLATION_COMPLETED when the gateway already ended them
       after a requested cancel, GRACE_EXPIRED otherwise. CANCEL_PENDING
       subscriptions whose period ended get PERIOD_ENDED.
    2. Active subscriber accounts whose latest failed-payment grace deadline
       passed and which hold no entitled subscription are DEACTIVATED.

- Suspension sweep:
    Active provider accounts overdue for PROVIDER_SUSPENSION_THRESHOLD_DAYS
    or more are SUSPENDED. Commissions posted earlier are untouched.

Rows are read in keyset-paginated batches and written with conditional
updates (no row locks). A failing row is logged and counted; the run goes on.

Usage:
    from billing.workers import ComplianceJobRunner

    runner = ComplianceJobRunner.build()
    runner.run_grace_period_sweep()   # {"processed": 3, "failed": 0}
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from celery import shared_task
from django.conf import settings
from django.db import transaction
from django.db.models import Max, Q, QuerySet
from django.utils import timezone

from accounts.models import Account
from billing.ledger.services import SubscriptionLedger
from billing.models import Subscription
from billing.services.lifecycle import SubscriptionStateMachine, TransitionContext
from billing.state_machines.states import SubscriptionEvent, SubscriptionState

if TYPE_CHECKING:
    from django.db.models import Model

logger = logging.getLogger(__name__)


class ComplianceJobRunner:
    """
    Runs the grace-period and suspension sweeps.

    Collaborators are injected so tests can pin the clock and batch size.
    """

    def __init__(
        self,
        ledger: SubscriptionLedger,
        state_machine: SubscriptionStateMachine,
        batch_size: int | None = None,
        clock: Callable[[], datetime] = timezone.now,
        suspension_threshold_days: int | None = None,
    ):
        self.ledger = ledger
        self.state_machine = state_machine
        self.batch_size = batch_size or settings.COMPLIANCE_BATCH_SIZE
        self.clock = clock
        self.suspension_threshold = timedelta(
            days=suspension_threshold_days
            if suspension_threshold_days is not None
            else settings.PROVIDER_SUSPENSION_THRESHOLD_DAYS
        )

    @classmethod
    def build(cls, clock: Callable[[], datetime] = timezone.now) -> ComplianceJobRunner:
        """Runner wired with the default ledger; sweeps never call the gateway."""
        ledger = SubscriptionLedger()
        return cls(
            ledger=ledger,
            state_machine=SubscriptionStateMachine(ledger=ledger, clock=clock),
            clock=clock,
        )

    # =========================================================================
    # Batching
    # =========================================================================

    def _batches(self, queryset: QuerySet) -> Iterator[list[Model]]:
        """Yield rows in primary-key order, one bounded batch at a time."""
        last_pk = None
        while True:
            page = queryset.order_by("pk")
            if last_pk is not None:
                page = page.filter(pk__gt=last_pk)
            rows = list(page[: self.batch_size])
            if not rows:
                return
            yield rows
            last_pk = rows[-1].pk

    # =========================================================================
    # Grace-period sweep
    # =========================================================================

    def run_grace_period_sweep(self) -> dict[str, int]:
        now = self.clock()
        logger.info("Starting grace-period sweep", extra={"now": now.isoformat()})

        counts = {"processed": 0, "failed": 0}

        for queryset in (
            Subscription.objects.period_ended(now),
            Subscription.objects.grace_expired(now),
        ):
            for batch in self._batches(queryset):
                for subscription in batch:
                    self._count(counts, self._expire_subscription, subscription, now)

        for batch in self._batches(self._deactivation_candidates(now)):
            for account in batch:
                self._count(counts, self._deactivate_account, account, now)

        logger.info(
            f"Grace-period sweep complete: {counts['processed']} processed, {counts['failed']} failed",
            extra=counts,
        )
        return counts

    def _expire_subscription(self, subscription: Subscription, now: datetime) -> bool:
        subscription = self.ledger.get(subscription.pk)

        if subscription.state == SubscriptionState.CANCEL_PENDING:
            if subscription.current_period_end is None or subscription.current_period_end > now:
                return False
            event = SubscriptionEvent.PERIOD_ENDED
        elif subscription.state == SubscriptionState.GRACE_PERIOD:
            if subscription.grace_period_ends_at is None or subscription.grace_period_ends_at > now:
                return False
            if subscription.gateway_ended_at is not None and subscription.cancel_at_period_end:
                event = SubscriptionEvent.CANCELLATION_COMPLETED
            else:
                event = SubscriptionEvent.GRACE_EXPIRED
        else:
            return False

        with transaction.atomic():
            result = self.state_machine.apply(
                subscription,
                event,
                TransitionContext(occurred_at=now),
            )
        return result.applied

    def _deactivation_candidates(self, now: datetime) -> QuerySet:
        """Active subscribers whose latest failed-payment grace deadline passed."""
        return (
            Account.objects.subscribers()
            .active()
            .annotate(
                latest_grace_deadline=Max(
                    "subscriptions__grace_period_ends_at",
                    filter=Q(subscriptions__state=SubscriptionState.SUSPENDED),
                )
            )
            .filter(latest_grace_deadline__lte=now)
        )

    def _deactivate_account(self, account: Account, now: datetime) -> bool:
        if self.ledger.has_entitled_subscription(account.pk):
            return False
        deactivated = self.ledger.deactivate_subscriber(account.pk, now)
        if deactivated:
            logger.info("Subscriber account deactivated", extra={"account_id": str(account.pk)})
        return deactivated

    # =========================================================================
    # Suspension sweep
    # =========================================================================

    def run_suspension_sweep(self) -> dict[str, int]:
        now = self.clock()
        logger.info("Starting suspension sweep", extra={"now": now.isoformat()})

        counts = {"processed": 0, "failed": 0}
        overdue = Account.objects.providers().active().overdue_for(
            self.suspension_threshold.days, now
        )

        for batch in self._batches(overdue):
            for account in batch:
                self._count(counts, self._suspend_account, account, now)

        logger.info(
            f"Suspension sweep complete: {counts['processed']} processed, {counts['failed']} failed",
            extra=counts,
        )
        return counts

    def _suspend_account(self, account: Account, now: datetime) -> bool:
        suspended = self.ledger.suspend_provider(account.pk, now)
        if suspended:
            logger.info(
                "Provider account suspended",
                extra={
                    "account_id": str(account.pk),
                    "payment_overdue_since": account.payment_overdue_since.isoformat(),
                },
            )
        return suspended

    # =========================================================================
    # Per-row bookkeeping
    # =========================================================================

    @staticmethod
    def _count(counts: dict[str, int], step: Callable[..., bool], row, now: datetime) -> None:
        try:
            if step(row, now):
                counts["processed"] += 1
        except Exception as e:
            counts["failed"] += 1
            logger.error(
                f"Compliance sweep failed for {type(row).__name__}: {e}",
                extra={"row_id": str(row.pk), "step": step.__name__},
                exc_info=True,
            )


# =============================================================================
# Celery Tasks
# =============================================================================


@shared_task(bind=True, acks_late=True)
def run_grace_period_sweep(self) -> dict:
    """Scheduled entry point for the grace-period sweep."""
    logger.info("Grace-period sweep task started", extra={"task_id": self.request.id})
    return ComplianceJobRunner.build().run_grace_period_sweep()


@shared_task(bind=True, acks_late=True)
def run_suspension_sweep(self) -> dict:
    """Scheduled entry point for the provider suspension sweep."""
    logger.info("Suspension sweep task started", extra={"task_id": self.request.id})
    return ComplianceJobRunner.build().run_suspension_sweep()
