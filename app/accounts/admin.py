"""
Django admin configuration for account models.
"""

from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from accounts.models import Account, User


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    """Admin for the email-identified User."""

    list_display = ("email", "is_active", "is_staff", "date_joined")
    list_filter = ("is_active", "is_staff", "is_superuser")
    search_fields = ("email",)
    ordering = ("-date_joined",)
    fieldsets = (
        (None, {"fields": ("email", "password")}),
        ("Status", {"fields": ("is_active", "is_staff", "is_superuser")}),
        ("Permissions", {"fields": ("groups", "user_permissions")}),
        ("Important dates", {"fields": ("date_joined", "last_login")}),
    )
    readonly_fields = ("date_joined", "last_login")
    add_fieldsets = (
        (
            None,
            {
                "classes": ("wide",),
                "fields": ("email", "password1", "password2"),
            },
        ),
    )


@admin.register(Account)
class AccountAdmin(admin.ModelAdmin):
    """
    Admin for billing accounts.

    Status columns are read-only: they are owned by the compliance sweeps,
    the webhook pipeline and the takeover workflow.
    """

    list_display = (
        "id",
        "kind",
        "display_name",
        "status",
        "payment_overdue_since",
        "billing_payer",
        "created_at",
    )
    list_filter = ("kind", "status")
    search_fields = ("id", "display_name", "gateway_customer_id", "user__email")
    raw_id_fields = ("user", "billing_payer", "original_owner")
    readonly_fields = (
        "status",
        "suspended_at",
        "deactivated_at",
        "payment_overdue_since",
        "billing_payer",
        "billing_payer_since",
        "original_owner",
        "created_at",
        "updated_at",
    )
