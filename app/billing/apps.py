"""
Billing app configuration.

This app keeps the local entitlement and commission ledger consistent with
the payment gateway:
- Subscription lifecycle state machine
- Commission split posting
- Idempotent webhook ingestion
- Compliance sweeps (grace-period deactivation, overdue suspension)
- Billing takeover workflow
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self):
        # Populate the webhook handler registry
        from billing.webhooks import handlers  # noqa: F401
