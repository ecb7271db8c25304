"""
State and event enums for billing models.

These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Subscription States:
    trialing -> active <-> past_due -> grace_period -> suspended
    active/past_due/grace_period -> cancel_pending -> grace_period -> cancelled
    suspended -> active (re-entry on a successful charge)
    grace_period -> active (subscriber resumes before the deadline)

Billing Takeover States:
    pending -> payment_confirmed -> completed
    pending/payment_confirmed -> failed
"""

from django.db import models


class SubscriptionState(models.TextChoices):
    """
    States for the Subscription lifecycle.

    Terminal states: CANCELLED. SUSPENDED is terminal except for the
    re-entry transition on a successful charge.
    """

    TRIALING = "trialing", "Trialing"
    ACTIVE = "active", "Active"
    PAST_DUE = "past_due", "Past Due"
    GRACE_PERIOD = "grace_period", "Grace Period"
    CANCEL_PENDING = "cancel_pending", "Cancel Pending"
    SUSPENDED = "suspended", "Suspended"
    CANCELLED = "cancelled", "Cancelled"


# States in which the subscriber still has access to the deliverable
ENTITLED_STATES = frozenset(
    {
        SubscriptionState.TRIALING,
        SubscriptionState.ACTIVE,
        SubscriptionState.PAST_DUE,
        SubscriptionState.GRACE_PERIOD,
        SubscriptionState.CANCEL_PENDING,
    }
)


class SubscriptionEvent(models.TextChoices):
    """
    Events the subscription state machine understands.

    Gateway events are stored on PaymentEvent; user and job events are
    produced internally and never persisted as payment events.
    """

    # Gateway
    CHARGE_SUCCEEDED = "charge_succeeded", "Charge Succeeded"
    CHARGE_FAILED = "charge_failed", "Charge Failed"
    SUBSCRIPTION_UPDATED = "subscription_updated", "Subscription Updated"
    SUBSCRIPTION_DELETED = "subscription_deleted", "Subscription Deleted"

    # User actions
    CANCEL_REQUESTED = "cancel_requested", "Cancel Requested"
    RESUME_REQUESTED = "resume_requested", "Resume Requested"

    # Derived / scheduled
    PERIOD_ENDED = "period_ended", "Period Ended"
    GRACE_EXPIRED = "grace_expired", "Grace Expired"
    CANCELLATION_COMPLETED = "cancellation_completed", "Cancellation Completed"


class PaymentEventType(models.TextChoices):
    """Normalized type of an inbound gateway notification."""

    CHARGE_SUCCEEDED = "charge_succeeded", "Charge Succeeded"
    CHARGE_FAILED = "charge_failed", "Charge Failed"
    SUBSCRIPTION_UPDATED = "subscription_updated", "Subscription Updated"
    SUBSCRIPTION_DELETED = "subscription_deleted", "Subscription Deleted"
    CHECKOUT_COMPLETED = "checkout_completed", "Checkout Completed"
    UNSUPPORTED = "unsupported", "Unsupported"


class CommissionStatus(models.TextChoices):
    """
    Posting status of a commission record.

    WITHHELD records are written for suspended providers: the payment is
    still accounted for, but the provider share is not payable.
    """

    POSTED = "posted", "Posted"
    WITHHELD = "withheld", "Withheld"


class TakeoverState(models.TextChoices):
    """States for the BillingTakeover workflow."""

    PENDING = "pending", "Pending"
    PAYMENT_CONFIRMED = "payment_confirmed", "Payment Confirmed"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class TakeoverType(models.TextChoices):
    """What a takeover transfers."""

    BILLING_ONLY = "billing_only", "Billing Only"
    FULL_PRIMARY = "full_primary", "Full Primary"


class TakeoverReason(models.TextChoices):
    """Why the previous payer is being replaced."""

    DEATH = "death", "Death"
    FINANCIAL = "financial", "Financial"
    HEALTH = "health", "Health"
    OTHER = "other", "Other"
