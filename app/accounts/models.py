"""
Account models.

- User: Email-identified login identity (slim, auth-focused)
- Account: Billing identity of a provider or subscriber

An Account is created at signup and never hard-deleted. Its lifecycle
``status`` is independent of any subscription: the compliance sweeps move it
to SUSPENDED or DEACTIVATED, a later successful charge can lift a
suspension, and a billing takeover repoints ``billing_payer``.

Related files:
    - managers.py: UserManager and AccountQuerySet
    - billing/workers/compliance.py: status sweeps
    - billing/services/takeover.py: payer pointer updates
"""

from __future__ import annotations

from django.conf import settings
from django.contrib.auth.models import AbstractBaseUser, PermissionsMixin
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from accounts.choices import AccountKind, AccountStatus
from accounts.managers import AccountQuerySet, UserManager
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel


def default_commission_rate_bps() -> int:
    return settings.DEFAULT_PROVIDER_COMMISSION_BPS


class User(AbstractBaseUser, PermissionsMixin):
    """
    Custom User model using email as the primary identifier.

    Billing data lives on Account; a user may own several accounts
    (e.g. a provider account and a personal subscriber account).
    """

    email = models.EmailField(
        unique=True,
        max_length=254,
        help_text="User's email address (primary identifier)",
    )
    is_active = models.BooleanField(
        default=True,
        help_text="Whether this user can log in. Deselect instead of deleting.",
    )
    is_staff = models.BooleanField(
        default=False,
        help_text="Whether the user can access the admin site.",
    )
    date_joined = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    USERNAME_FIELD = "email"
    REQUIRED_FIELDS = []

    objects = UserManager()

    class Meta:
        verbose_name = "user"
        verbose_name_plural = "users"
        ordering = ["-date_joined"]

    def __str__(self):
        return self.email


class Account(UUIDPrimaryKeyMixin, BaseModel):
    """
    Billing identity for a provider or a subscriber.

    Fields:
        user: Current owner (moves to the new payer on a full_primary takeover)
        kind: provider or subscriber
        gateway_customer_id: Gateway customer charged for this account
        gateway_connected_account_id: Provider's payout account
        commission_rate_bps: Provider share in basis points, snapshotted onto
            each subscription at creation
        status: active / suspended / deactivated
        suspended_at, deactivated_at: Written once when the status flips
        payment_overdue_since: First unresolved failed charge, cleared on success
        billing_payer: Account currently paying for this one (unset = self)
        original_owner: First owner, preserved across ownership transfers
    """

    # ==========================================================================
    # Identity
    # ==========================================================================

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="accounts",
        help_text="Current owner of this account",
    )
    kind = models.CharField(
        max_length=20,
        choices=AccountKind.choices,
        db_index=True,
    )
    display_name = models.CharField(max_length=200, blank=True)

    # ==========================================================================
    # Gateway References
    # ==========================================================================

    gateway_customer_id = models.CharField(
        max_length=255,
        blank=True,
        db_index=True,
        help_text="Gateway customer id (cus_xxx)",
    )
    gateway_connected_account_id = models.CharField(
        max_length=255,
        blank=True,
        help_text="Gateway connected account id for provider payouts (acct_xxx)",
    )

    # ==========================================================================
    # Commission
    # ==========================================================================

    commission_rate_bps = models.PositiveIntegerField(
        default=default_commission_rate_bps,
        validators=[MinValueValidator(0), MaxValueValidator(10_000)],
        help_text="Provider share of net revenue in basis points (providers only)",
    )

    # ==========================================================================
    # Lifecycle Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=AccountStatus.choices,
        default=AccountStatus.ACTIVE,
        db_index=True,
    )
    suspended_at = models.DateTimeField(null=True, blank=True)
    deactivated_at = models.DateTimeField(null=True, blank=True)
    payment_overdue_since = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the oldest unresolved charge failure happened",
    )

    # ==========================================================================
    # Billing Responsibility
    # ==========================================================================

    billing_payer = models.ForeignKey(
        "self",
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="paid_accounts",
        help_text="Account that took over billing (unset means self-paying)",
    )
    billing_payer_since = models.DateTimeField(null=True, blank=True)
    original_owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        null=True,
        blank=True,
        on_delete=models.PROTECT,
        related_name="+",
        help_text="Owner before the first full ownership transfer",
    )

    objects = AccountQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["kind", "status"], name="accounts_ac_kind_3f1a2b_idx"),
            models.Index(
                fields=["status", "payment_overdue_since"],
                name="accounts_ac_status_8c4d1e_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(commission_rate_bps__lte=10_000),
                name="account_commission_rate_bps_range",
            ),
        ]

    def __str__(self) -> str:
        return f"Account({self.id}, {self.kind}, {self.status})"

    @property
    def is_provider(self) -> bool:
        return self.kind == AccountKind.PROVIDER

    @property
    def is_suspended(self) -> bool:
        return self.status == AccountStatus.SUSPENDED

    @property
    def is_deactivated(self) -> bool:
        return self.status == AccountStatus.DEACTIVATED

    def is_managed_by(self, user) -> bool:
        """Owner or the owner of the account paying for this one."""
        if self.user_id == user.pk:
            return True
        payer = self.billing_payer
        return payer is not None and payer.user_id == user.pk

    @property
    def paying_account(self) -> Account:
        """The account whose payment method is charged for this one."""
        return self.billing_payer or self
