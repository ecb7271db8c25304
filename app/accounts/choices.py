"""
Choice enums for account models.
"""

from django.db import models


class AccountKind(models.TextChoices):
    """Role an account plays in a subscription."""

    PROVIDER = "provider", "Provider"
    SUBSCRIBER = "subscriber", "Subscriber"


class AccountStatus(models.TextChoices):
    """
    Account lifecycle status, independent of any single subscription.

    ACTIVE -> SUSPENDED: provider overdue on the platform subscription for
        the suspension threshold (cleared by a later successful charge)
    ACTIVE -> DEACTIVATED: subscriber grace period ran out (terminal)
    """

    ACTIVE = "active", "Active"
    SUSPENDED = "suspended", "Suspended"
    DEACTIVATED = "deactivated", "Deactivated"
