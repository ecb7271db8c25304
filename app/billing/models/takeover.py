"""
Billing takeover models.

BillingTakeover is the workflow row for one candidate's attempt to take
over paying for an account. TakeoverRecord is the audit entry written
exactly once when an attempt completes.

State Flow:
    PENDING -> PAYMENT_CONFIRMED (charge succeeded on the takeover checkout)
    PAYMENT_CONFIRMED -> COMPLETED (payer pointer moved)
    PENDING/PAYMENT_CONFIRMED -> FAILED (gateway error or lost race)

Usage:
    from billing.models import BillingTakeover

    takeover = BillingTakeover.objects.create(
        account=target,
        candidate=candidate,
        expected_previous_payer=target.billing_payer,
        takeover_type=TakeoverType.BILLING_ONLY,
        reason=TakeoverReason.FINANCIAL,
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone
from django_fsm import FSMField, transition

from billing.state_machines.states import TakeoverReason, TakeoverState, TakeoverType
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class BillingTakeover(UUIDPrimaryKeyMixin, BaseModel):
    """
    One candidate's attempt to become the billing payer for an account.

    Fields:
        account: Account whose billing is being taken over
        candidate: Account that will pay from now on
        expected_previous_payer: Payer pointer observed at initiation; the
            completing update only succeeds if it still matches
        checkout_session_id / checkout_url: Hosted checkout for the candidate
        subscription: Subscription the new payer takes over; its gateway
            binding moves to the checkout's subscription on completion
        gateway_subscription_id: Subscription created by that checkout
    """

    account = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="takeovers",
    )

    candidate = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="takeover_attempts",
    )

    expected_previous_payer = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="+",
        null=True,
        blank=True,
    )

    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.PROTECT,
        related_name="takeovers",
        null=True,
        blank=True,
    )

    takeover_type = models.CharField(max_length=20, choices=TakeoverType.choices)
    reason = models.CharField(max_length=20, choices=TakeoverReason.choices)
    reason_text = models.TextField(blank=True, default="")

    state = FSMField(
        default=TakeoverState.PENDING,
        choices=TakeoverState.choices,
        db_index=True,
        protected=True,
    )

    checkout_session_id = models.CharField(max_length=255, blank=True, default="", db_index=True)
    checkout_url = models.URLField(max_length=2048, blank=True, default="")
    gateway_subscription_id = models.CharField(max_length=255, blank=True, default="")

    failure_reason = models.CharField(max_length=255, blank=True, default="")
    confirmed_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Billing Takeover"
        verbose_name_plural = "Billing Takeovers"
        indexes = [
            models.Index(fields=["account", "state"], name="billing_bil_account_6f1e2d_idx"),
            models.Index(fields=["candidate", "state"], name="billing_bil_candida_0c9a4b_idx"),
        ]

    def __str__(self) -> str:
        return f"BillingTakeover({self.id}, {self.state})"

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=state,
        source=TakeoverState.PENDING,
        target=TakeoverState.PAYMENT_CONFIRMED,
    )
    def confirm_payment(self, gateway_subscription_id: str = ""):
        """Transition: PENDING -> PAYMENT_CONFIRMED"""
        self.confirmed_at = timezone.now()
        if gateway_subscription_id:
            self.gateway_subscription_id = gateway_subscription_id

    @transition(
        field=state,
        source=TakeoverState.PAYMENT_CONFIRMED,
        target=TakeoverState.COMPLETED,
    )
    def complete(self):
        """Transition: PAYMENT_CONFIRMED -> COMPLETED"""
        self.completed_at = timezone.now()

    @transition(
        field=state,
        source=[TakeoverState.PENDING, TakeoverState.PAYMENT_CONFIRMED],
        target=TakeoverState.FAILED,
    )
    def fail(self, reason: str = ""):
        """Transition: PENDING/PAYMENT_CONFIRMED -> FAILED"""
        self.failure_reason = reason[:255]

    @property
    def is_open(self) -> bool:
        return self.state in (TakeoverState.PENDING, TakeoverState.PAYMENT_CONFIRMED)


class TakeoverRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    Audit trail of a completed billing or ownership transfer.

    Created inside the transaction that moves the payer pointer, so a
    record exists if and only if the transfer happened.
    """

    takeover = models.OneToOneField(
        BillingTakeover,
        on_delete=models.PROTECT,
        related_name="record",
    )

    account = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="takeover_records",
    )

    previous_payer = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="+",
        null=True,
        blank=True,
    )

    new_payer = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="+",
    )

    previous_owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="+",
    )

    takeover_type = models.CharField(max_length=20, choices=TakeoverType.choices)
    reason = models.CharField(max_length=20, choices=TakeoverReason.choices)
    reason_text = models.TextField(blank=True, default="")
    gateway_subscription_id = models.CharField(max_length=255, blank=True, default="")
    completed_at = models.DateTimeField()

    class Meta:
        db_table = "takeover_records"
        ordering = ["-completed_at"]
        verbose_name = "Takeover Record"
        verbose_name_plural = "Takeover Records"

    def __str__(self) -> str:
        return f"TakeoverRecord({self.account_id} -> {self.new_payer_id}, {self.takeover_type})"
