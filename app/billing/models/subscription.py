"""
Subscription model: one row per entitlement instance.

A subscription gives a subscriber account access to one deliverable. It may
name a provider account that earns a commission share on every successful
charge; without a provider the platform keeps the whole net amount.

The commission rate is snapshotted from the provider when the subscription
is created and never recomputed.

Writes after creation go through billing.ledger.SubscriptionLedger, which
issues conditional updates guarded by ``version`` and ``state``. The
django-fsm methods below validate the edge; they do not persist anything.

Usage:
    from billing.models import Subscription

    subscription = Subscription.objects.create(
        subscriber=subscriber_account,
        provider=provider_account,
        deliverable_id="gallery-42",
        gateway_subscription_id="sub_xxx",
        commission_rate_bps=provider_account.commission_rate_bps,
        amount_cents=800,
    )
    subscription.is_entitled   # True while trialing
"""

from __future__ import annotations

from django.db import models
from django_fsm import FSMField, transition

from billing.state_machines.states import ENTITLED_STATES, SubscriptionState
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class SubscriptionQuerySet(models.QuerySet):
    """Lookups used by the webhook handlers and the compliance sweeps."""

    def live(self):
        return self.exclude(state=SubscriptionState.CANCELLED)

    def entitled(self):
        return self.filter(state__in=ENTITLED_STATES)

    def grace_expired(self, now):
        return self.filter(
            state=SubscriptionState.GRACE_PERIOD,
            grace_period_ends_at__lte=now,
        )

    def period_ended(self, now):
        return self.filter(
            state=SubscriptionState.CANCEL_PENDING,
            current_period_end__lte=now,
        )


class Subscription(UUIDPrimaryKeyMixin, BaseModel):
    """
    Local entitlement and commission ledger row.

    State Flow:
        TRIALING -> ACTIVE (first successful charge)
        ACTIVE -> PAST_DUE (charge failed)
        PAST_DUE -> GRACE_PERIOD (second consecutive failure)
        ACTIVE/PAST_DUE/GRACE_PERIOD -> CANCEL_PENDING (gateway deleted it)
        CANCEL_PENDING -> GRACE_PERIOD (period ended)
        GRACE_PERIOD -> ACTIVE (charge succeeded or subscriber resumed)
        GRACE_PERIOD -> SUSPENDED (deadline passed)
        GRACE_PERIOD -> CANCELLED (deadline passed after a requested cancel)
        SUSPENDED -> ACTIVE (re-entry on a successful charge)

    Fields:
        subscriber: Account holding the entitlement (and paying for it)
        provider: Account earning commission, or None
        deliverable_id: External id of the work the subscription unlocks
        gateway_subscription_id: Stripe subscription id (sub_xxx)
        commission_rate_bps: Provider rate captured at creation
        grace_period_ends_at: Deadline after which access is withdrawn
        last_event_at: Timestamp of the newest gateway event applied
        version: Optimistic locking version
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    subscriber = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="subscriptions",
        help_text="Account holding the entitlement",
    )

    provider = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="provided_subscriptions",
        null=True,
        blank=True,
        help_text="Provider earning a commission share (optional)",
    )

    deliverable_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="External id of the deliverable this subscription unlocks",
    )

    # ==========================================================================
    # Gateway Integration
    # ==========================================================================

    gateway_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Subscription ID (sub_xxx)",
    )

    gateway_price_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Price ID (price_xxx)",
    )

    # ==========================================================================
    # Amount & Commission
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Recurring amount in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    commission_rate_bps = models.PositiveIntegerField(
        default=0,
        help_text="Provider share in basis points, snapshotted at creation",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    state = FSMField(
        default=SubscriptionState.TRIALING,
        choices=SubscriptionState.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the subscription (managed by FSM)",
    )

    cancel_at_period_end = models.BooleanField(
        default=False,
        help_text="Renewal stops at the end of the current period",
    )

    current_period_end = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of the current paid period",
    )

    grace_period_ends_at = models.DateTimeField(
        null=True,
        blank=True,
        db_index=True,
        help_text="Deadline after which the grace period expires",
    )

    # ==========================================================================
    # Payment Failures & Access
    # ==========================================================================

    payment_failure_count = models.PositiveIntegerField(
        default=0,
        help_text="Consecutive failed charges since the last success",
    )

    last_payment_failure_at = models.DateTimeField(null=True, blank=True)

    access_suspended = models.BooleanField(
        default=False,
        help_text="Subscriber access withdrawn after the grace period",
    )

    access_suspended_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Termination
    # ==========================================================================

    gateway_ended_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the gateway reported the subscription deleted",
    )

    cancelled_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Ordering & Concurrency Control
    # ==========================================================================

    last_event_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Gateway timestamp of the newest applied event",
    )

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each ledger write",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Arbitrary JSON metadata for extensibility",
    )

    objects = SubscriptionQuerySet.as_manager()

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        db_table = "subscriptions"
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(fields=["subscriber", "state"], name="subscriptio_subscri_5e2c1a_idx"),
            models.Index(fields=["provider", "state"], name="subscriptio_provide_9b7d3f_idx"),
            models.Index(
                fields=["state", "current_period_end"],
                name="subscriptio_state_4a8e6c_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["subscriber", "deliverable_id"],
                condition=~models.Q(state=SubscriptionState.CANCELLED),
                name="subscription_one_live_per_deliverable",
            ),
            models.CheckConstraint(
                condition=models.Q(commission_rate_bps__lte=10_000),
                name="subscription_commission_rate_bps_range",
            ),
        ]

    def __str__(self) -> str:
        return f"Subscription({self.id}, {self.state}, {self.deliverable_id})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=[
            SubscriptionState.TRIALING,
            SubscriptionState.PAST_DUE,
            SubscriptionState.GRACE_PERIOD,
            SubscriptionState.SUSPENDED,
        ],
        target=SubscriptionState.ACTIVE,
    )
    def activate(self):
        """
        Activate after a successful charge.

        Transition: TRIALING/PAST_DUE/GRACE_PERIOD/SUSPENDED -> ACTIVE
        """

    @transition(
        field=state,
        source=[SubscriptionState.TRIALING, SubscriptionState.ACTIVE],
        target=SubscriptionState.PAST_DUE,
    )
    def mark_past_due(self):
        """Transition: TRIALING/ACTIVE -> PAST_DUE"""

    @transition(
        field=state,
        source=[SubscriptionState.PAST_DUE, SubscriptionState.CANCEL_PENDING],
        target=SubscriptionState.GRACE_PERIOD,
    )
    def enter_grace_period(self):
        """Transition: PAST_DUE/CANCEL_PENDING -> GRACE_PERIOD"""

    @transition(
        field=state,
        source=[
            SubscriptionState.TRIALING,
            SubscriptionState.ACTIVE,
            SubscriptionState.PAST_DUE,
            SubscriptionState.GRACE_PERIOD,
        ],
        target=SubscriptionState.CANCEL_PENDING,
    )
    def mark_cancel_pending(self):
        """
        The gateway ended the subscription; access runs until period end.

        Transition: TRIALING/ACTIVE/PAST_DUE/GRACE_PERIOD -> CANCEL_PENDING
        """

    @transition(
        field=state,
        source=[SubscriptionState.GRACE_PERIOD, SubscriptionState.CANCEL_PENDING],
        target=SubscriptionState.ACTIVE,
    )
    def resume(self):
        """Transition: GRACE_PERIOD/CANCEL_PENDING -> ACTIVE"""

    @transition(
        field=state,
        source=SubscriptionState.GRACE_PERIOD,
        target=SubscriptionState.SUSPENDED,
    )
    def suspend(self):
        """Transition: GRACE_PERIOD -> SUSPENDED"""

    @transition(
        field=state,
        source=SubscriptionState.GRACE_PERIOD,
        target=SubscriptionState.CANCELLED,
    )
    def cancel(self):
        """Transition: GRACE_PERIOD -> CANCELLED (terminal)"""

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_entitled(self) -> bool:
        """Whether the subscriber currently has access."""
        return self.state in ENTITLED_STATES and not self.access_suspended

    @property
    def is_cancelled(self) -> bool:
        return self.state == SubscriptionState.CANCELLED

    @property
    def entitlement(self) -> str:
        """
        Entitlement as shown to subscribers: 'active', 'grace' or 'suspended'.

        Gateway detail (past_due, cancel_pending) is never exposed.
        """
        if self.state == SubscriptionState.GRACE_PERIOD:
            return "grace"
        if self.is_entitled:
            return "active"
        return "suspended"
