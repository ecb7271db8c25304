"""
Billing admin configuration.

Ledger rows are read-only here: lifecycle state moves through the state
machine and the takeover service, and payment events and commission
records are an append-only audit trail.
"""

from django.contrib import admin

from billing.ledger.types import Money
from billing.models import (
    BillingTakeover,
    CommissionRecord,
    PaymentEvent,
    Subscription,
    TakeoverRecord,
)


class ReadOnlyAdmin(admin.ModelAdmin):
    """No add, change or delete from the admin."""

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    """
    Admin configuration for Subscription.

    State changes should be made through the service layer, not admin.
    """

    list_display = [
        "id",
        "subscriber",
        "provider",
        "deliverable_id",
        "state",
        "amount_display",
        "commission_rate_bps",
        "grace_period_ends_at",
        "created_at",
    ]
    list_filter = ["state", "access_suspended", "cancel_at_period_end", "currency"]
    search_fields = ["id", "gateway_subscription_id", "deliverable_id", "subscriber__user__email"]
    readonly_fields = [
        "id",
        "state",
        "commission_rate_bps",
        "version",
        "last_event_at",
        "gateway_ended_at",
        "cancelled_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (None, {"fields": ("id", "subscriber", "provider", "deliverable_id", "state")}),
        (
            "Gateway",
            {"fields": ("gateway_subscription_id", "gateway_price_id", "gateway_ended_at")},
        ),
        ("Amount", {"fields": ("amount_cents", "currency", "commission_rate_bps")}),
        (
            "Lifecycle",
            {
                "fields": (
                    "cancel_at_period_end",
                    "current_period_end",
                    "grace_period_ends_at",
                    "payment_failure_count",
                    "last_payment_failure_at",
                    "access_suspended",
                    "access_suspended_at",
                    "cancelled_at",
                    "last_event_at",
                ),
            },
        ),
        ("Metadata", {"fields": ("metadata", "version"), "classes": ("collapse",)}),
        ("Timestamps", {"fields": ("created_at", "updated_at")}),
    )

    def amount_display(self, obj: Subscription) -> str:
        return str(Money(obj.amount_cents, obj.currency))

    amount_display.short_description = "Amount"

    def has_delete_permission(self, request, obj=None) -> bool:
        """Subscriptions are cancelled, never deleted."""
        return False


@admin.register(PaymentEvent)
class PaymentEventAdmin(ReadOnlyAdmin):
    list_display = [
        "gateway_event_id",
        "event_type",
        "subscription",
        "amount_cents",
        "occurred_at",
        "received_at",
    ]
    list_filter = ["event_type", "currency"]
    search_fields = ["gateway_event_id", "gateway_payment_id", "subscription__gateway_subscription_id"]
    date_hierarchy = "received_at"
    ordering = ["-received_at"]


@admin.register(CommissionRecord)
class CommissionRecordAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "subscription",
        "provider",
        "gross_cents",
        "fee_cents",
        "provider_cents",
        "platform_cents",
        "commission_rate_bps",
        "status",
        "created_at",
    ]
    list_filter = ["status", "currency"]
    search_fields = ["id", "gateway_payment_id", "provider__user__email"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]


@admin.register(BillingTakeover)
class BillingTakeoverAdmin(admin.ModelAdmin):
    list_display = ["id", "account", "candidate", "takeover_type", "reason", "state", "created_at"]
    list_filter = ["state", "takeover_type", "reason"]
    search_fields = ["id", "checkout_session_id", "gateway_subscription_id"]
    readonly_fields = [
        "id",
        "state",
        "expected_previous_payer",
        "checkout_session_id",
        "checkout_url",
        "gateway_subscription_id",
        "failure_reason",
        "confirmed_at",
        "completed_at",
        "created_at",
        "updated_at",
    ]
    ordering = ["-created_at"]

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(TakeoverRecord)
class TakeoverRecordAdmin(ReadOnlyAdmin):
    list_display = [
        "id",
        "account",
        "previous_payer",
        "new_payer",
        "takeover_type",
        "reason",
        "completed_at",
    ]
    list_filter = ["takeover_type", "reason"]
    search_fields = ["id", "account__id", "gateway_subscription_id"]
    ordering = ["-completed_at"]
