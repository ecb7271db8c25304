"""
CommissionRecord model: the provider/platform split of one payment.

Exactly one record per PaymentEvent (OneToOne) and per gateway invoice
(partial unique index on a non-empty gateway_payment_id), which makes
commission posting at-most-once no matter how often an event is replayed
or how the gateway reports the same invoice. Amounts are written once and
never changed.

Records posted while the provider account is suspended are WITHHELD: the
payment is accounted for but the provider share is not payable. Records
posted before the suspension keep their status.
"""

from __future__ import annotations

from django.db import models
from django.db.models import F, Q

from billing.state_machines.states import CommissionStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


class CommissionRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    Derived from a successful-charge PaymentEvent.

    Invariant (database check):
        provider_cents + platform_cents + fee_cents == gross_cents
    """

    payment_event = models.OneToOneField(
        "billing.PaymentEvent",
        on_delete=models.PROTECT,
        related_name="commission_record",
        help_text="Originating payment event (unique - at most one commission per payment)",
    )

    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.PROTECT,
        related_name="commission_records",
    )

    provider = models.ForeignKey(
        "accounts.Account",
        on_delete=models.PROTECT,
        related_name="commission_records",
        null=True,
        blank=True,
    )

    gateway_payment_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        db_index=True,
        help_text="Invoice id, used to spot the same invoice reported twice",
    )

    gross_cents = models.PositiveBigIntegerField()
    fee_cents = models.PositiveBigIntegerField(default=0)
    provider_cents = models.PositiveBigIntegerField()
    platform_cents = models.PositiveBigIntegerField()
    currency = models.CharField(max_length=3, default="usd")

    commission_rate_bps = models.PositiveIntegerField(
        help_text="Rate the split was computed with (subscription snapshot)",
    )

    status = models.CharField(
        max_length=16,
        choices=CommissionStatus.choices,
        default=CommissionStatus.POSTED,
        db_index=True,
    )

    class Meta:
        db_table = "commission_records"
        ordering = ["-created_at"]
        verbose_name = "Commission Record"
        verbose_name_plural = "Commission Records"
        constraints = [
            models.CheckConstraint(
                condition=Q(
                    gross_cents=F("provider_cents") + F("platform_cents") + F("fee_cents")
                ),
                name="commission_split_sums_to_gross",
            ),
            models.UniqueConstraint(
                fields=["gateway_payment_id"],
                condition=~Q(gateway_payment_id=""),
                name="commission_one_per_gateway_payment",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"CommissionRecord({self.id}, provider={self.provider_cents}, "
            f"platform={self.platform_cents} {self.currency.upper()})"
        )

    @property
    def is_withheld(self) -> bool:
        return self.status == CommissionStatus.WITHHELD
