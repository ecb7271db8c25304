"""
PaymentEvent model: append-only log of gateway notifications.

Every verified webhook delivery is inserted here before any ledger mutation,
inside the same transaction. The unique gateway_event_id makes this table
the deduplication set: a second insert of the same event id fails with an
IntegrityError and the delivery is acknowledged as already processed.

Rows are never updated. Calling save() on an existing row raises
InvariantViolation.

Usage:
    from billing.models import PaymentEvent

    PaymentEvent.objects.create(
        gateway_event_id="evt_123",
        event_type=PaymentEventType.CHARGE_SUCCEEDED,
        gateway_event_type="invoice.paid",
        occurred_at=event.occurred_at,
        payload=event.payload,
    )
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from billing.exceptions import InvariantViolation
from billing.state_machines.states import PaymentEventType
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class PaymentEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Immutable record of one money-movement notification.

    Fields:
        gateway_event_id: Stripe Event ID (evt_xxx), unique
        event_type: Normalized event type
        gateway_event_type: Raw Stripe type (e.g. 'invoice.payment_failed')
        subscription: Local subscription, when it existed at receipt
        gateway_payment_id: Invoice id the event refers to
        amount_cents / fee_cents / currency: Money reported by the gateway
        occurred_at: Gateway event timestamp (used for ordering)
        received_at: When this service accepted the delivery
        payload: Full verified event body
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    gateway_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=32,
        choices=PaymentEventType.choices,
        db_index=True,
        help_text="Normalized event type",
    )

    gateway_event_type = models.CharField(
        max_length=100,
        help_text="Stripe event type (e.g., 'invoice.paid')",
    )

    # ==========================================================================
    # References
    # ==========================================================================

    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.PROTECT,
        related_name="payment_events",
        null=True,
        blank=True,
    )

    gateway_payment_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Stripe Invoice ID (in_xxx)",
    )

    # ==========================================================================
    # Money
    # ==========================================================================

    amount_cents = models.PositiveBigIntegerField(default=0)
    fee_cents = models.PositiveBigIntegerField(default=0)
    currency = models.CharField(max_length=3, default="usd")

    # ==========================================================================
    # Timing & Payload
    # ==========================================================================

    occurred_at = models.DateTimeField(help_text="Gateway event timestamp")

    received_at = models.DateTimeField(default=timezone.now)

    payload = models.JSONField(
        default=dict,
        help_text="Full webhook payload from Stripe (JSON)",
    )

    class Meta:
        db_table = "payment_events"
        ordering = ["-occurred_at"]
        verbose_name = "Payment Event"
        verbose_name_plural = "Payment Events"
        indexes = [
            models.Index(fields=["subscription", "occurred_at"], name="payment_eve_subscri_2d7b91_idx"),
        ]

    def __str__(self) -> str:
        return f"PaymentEvent({self.gateway_event_id}, {self.event_type})"

    def save(self, *args, **kwargs):
        """Insert only; existing rows are immutable."""
        if not self._state.adding:
            raise InvariantViolation(
                "Payment events are append-only",
                details={"gateway_event_id": self.gateway_event_id},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise InvariantViolation(
            "Payment events are append-only",
            details={"gateway_event_id": self.gateway_event_id},
        )
