"""
DRF serializers for billing API.

Request bodies use camelCase keys; responses are built from service
results. Serializers only validate shape; eligibility and ownership are
checked by the services.

Usage:
    serializer = TakeoverRequestSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    serializer.validated_data["candidatePayerId"]
"""

from __future__ import annotations

from rest_framework import serializers

from billing.state_machines.states import TakeoverReason, TakeoverType


class TakeoverRequestSerializer(serializers.Serializer):
    """
    Input for POST /accounts/{id}/takeover.

    Fields:
        candidatePayerId: Account that will pay from now on
        takeoverType: billing_only or full_primary
        reason: death, financial, health or other
        reasonText: Free text, required when reason is other
    """

    candidatePayerId = serializers.UUIDField()
    takeoverType = serializers.ChoiceField(choices=TakeoverType.choices)
    reason = serializers.ChoiceField(choices=TakeoverReason.choices)
    reasonText = serializers.CharField(
        required=False,
        allow_blank=True,
        max_length=1000,
        default="",
    )

    def validate(self, attrs: dict) -> dict:
        if attrs["reason"] == TakeoverReason.OTHER and not attrs.get("reasonText", "").strip():
            raise serializers.ValidationError({"reasonText": "Describe the reason for the takeover."})
        return attrs


class TakeoverResponseSerializer(serializers.Serializer):
    """Output of a started takeover."""

    takeoverId = serializers.UUIDField(source="pk")
    checkoutSessionId = serializers.CharField(source="checkout_session_id")
    checkoutUrl = serializers.CharField(source="checkout_url")


class SubscriptionStatusSerializer(serializers.Serializer):
    """
    A subscription as its subscriber sees it.

    Only the entitlement is exposed, never the gateway's own status.
    """

    subscriptionId = serializers.UUIDField(source="pk")
    deliverableId = serializers.CharField(source="deliverable_id")
    entitlement = serializers.CharField()
    cancelAtPeriodEnd = serializers.BooleanField(source="cancel_at_period_end")
    currentPeriodEnd = serializers.DateTimeField(source="current_period_end", allow_null=True)
    gracePeriodEndsAt = serializers.SerializerMethodField()

    def get_gracePeriodEndsAt(self, obj) -> str | None:
        if obj.entitlement != "grace" or obj.grace_period_ends_at is None:
            return None
        return serializers.DateTimeField().to_representation(obj.grace_period_ends_at)


class JobResultSerializer(serializers.Serializer):
    processed = serializers.IntegerField()
    failed = serializers.IntegerField()


class ProviderStandingSerializer(serializers.Serializer):
    """Overdue/suspended banner and payout balance for a provider."""

    overdue = serializers.BooleanField()
    suspended = serializers.BooleanField()
    overdueSince = serializers.DateTimeField(source="overdue_since", allow_null=True)
    daysOverdue = serializers.IntegerField(source="days_overdue")
    daysUntilSuspension = serializers.IntegerField(source="days_until_suspension", allow_null=True)
    suspensionThresholdDays = serializers.IntegerField(source="suspension_threshold_days")
    balance = serializers.DictField(allow_null=True)


class BillingStatusSerializer(serializers.Serializer):
    """Output of GET /accounts/{id}/billing-status."""

    accountId = serializers.CharField(source="account_id")
    kind = serializers.CharField()
    status = serializers.CharField()
    subscriptions = SubscriptionStatusSerializer(many=True)
    provider = ProviderStandingSerializer(required=False)
