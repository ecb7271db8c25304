"""
DRF views for billing app.

Endpoints:
    POST /api/v1/jobs/grace-period-sweep - Run the grace-period sweep
    POST /api/v1/jobs/suspension-sweep - Run the provider suspension sweep
    POST /api/v1/accounts/{id}/takeover - Start a billing takeover
    GET /api/v1/accounts/{id}/billing-status - Entitlement and standing
    POST /api/v1/subscriptions/{id}/cancel - Cancel at period end
    POST /api/v1/subscriptions/{id}/resume - Undo a cancel / recover

The webhook endpoint lives in billing.webhooks.views.

Security:
    - Job triggers use a shared bearer secret (HasJobTriggerToken)
    - Everything else requires an authenticated user who owns, or pays
      for, the account involved

Service-layer errors are returned as ``exc.to_dict()`` with the status the
exception class declares.
"""

from __future__ import annotations

import logging

from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from accounts.models import Account
from billing.adapters import get_payment_gateway
from billing.ledger.services import SubscriptionLedger
from billing.permissions import HasJobTriggerToken
from billing.serializers import (
    BillingStatusSerializer,
    JobResultSerializer,
    SubscriptionStatusSerializer,
    TakeoverRequestSerializer,
    TakeoverResponseSerializer,
)
from billing.services import (
    AccountStandingService,
    BillingTakeoverService,
    SubscriptionStateMachine,
)
from billing.workers import ComplianceJobRunner
from core.exceptions import BaseApplicationError, NotFoundError, PermissionDeniedError

logger = logging.getLogger(__name__)


def error_response(error: BaseApplicationError) -> Response:
    return Response(error.to_dict(), status=error.http_status)


# =============================================================================
# Job Triggers
# =============================================================================


class JobTriggerView(APIView):
    """
    Base for scheduler-triggered endpoints.

    No user authentication runs; HasJobTriggerToken checks the bearer
    secret. A missing token answers 401 with a Bearer challenge.
    """

    authentication_classes = []
    permission_classes = [HasJobTriggerToken]

    def get_authenticate_header(self, request):
        return 'Bearer realm="jobs"'


class GracePeriodSweepView(JobTriggerView):
    """
    Trigger the grace-period sweep.

    POST /api/v1/jobs/grace-period-sweep
    Authorization: Bearer <JOB_TRIGGER_SECRET>
    """

    @extend_schema(
        summary="Run grace-period sweep",
        description=(
            "Expire subscriptions whose grace period ended and deactivate "
            "subscriber accounts left without an entitled subscription."
        ),
        tags=["Billing - Jobs"],
        request=None,
        responses={200: JobResultSerializer},
    )
    def post(self, request):
        result = ComplianceJobRunner.build().run_grace_period_sweep()
        return Response(result)


class SuspensionSweepView(JobTriggerView):
    """
    Trigger the provider suspension sweep.

    POST /api/v1/jobs/suspension-sweep
    Authorization: Bearer <JOB_TRIGGER_SECRET>
    """

    @extend_schema(
        summary="Run suspension sweep",
        description="Suspend provider accounts overdue past the suspension threshold.",
        tags=["Billing - Jobs"],
        request=None,
        responses={200: JobResultSerializer},
    )
    def post(self, request):
        result = ComplianceJobRunner.build().run_suspension_sweep()
        return Response(result)


# =============================================================================
# Accounts
# =============================================================================


class AccountTakeoverView(APIView):
    """
    Start a billing takeover of an account.

    POST /api/v1/accounts/{account_id}/takeover

    Request body:
        {
            "candidatePayerId": "<uuid>",
            "takeoverType": "billing_only",
            "reason": "financial",
            "reasonText": ""
        }

    Returns:
        201 {"takeoverId", "checkoutSessionId", "checkoutUrl"}
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Start billing takeover",
        description=(
            "Open a hosted checkout for the candidate payer. The takeover "
            "completes when the gateway reports the payment."
        ),
        tags=["Billing - Accounts"],
        request=TakeoverRequestSerializer,
        responses={
            201: TakeoverResponseSerializer,
            400: OpenApiResponse(description="Invalid input or candidate not eligible"),
            403: OpenApiResponse(description="Caller does not own the candidate account"),
            409: OpenApiResponse(description="A takeover by this candidate is in progress"),
            503: OpenApiResponse(description="Gateway temporarily unavailable"),
        },
    )
    def post(self, request, account_id):
        serializer = TakeoverRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        gateway = get_payment_gateway()
        service = BillingTakeoverService(ledger=SubscriptionLedger(), gateway=gateway)

        try:
            takeover = service.initiate(
                account_id=account_id,
                candidate_id=data["candidatePayerId"],
                takeover_type=data["takeoverType"],
                reason=data["reason"],
                reason_text=data["reasonText"],
                requested_by=request.user,
            )
        except BaseApplicationError as e:
            return error_response(e)

        return Response(TakeoverResponseSerializer(takeover).data, status=status.HTTP_201_CREATED)


class BillingStatusView(APIView):
    """
    Entitlement and standing of an account.

    GET /api/v1/accounts/{account_id}/billing-status

    Visible to the account owner and to the owner of its billing payer.
    """

    permission_classes = [IsAuthenticated]

    @extend_schema(
        summary="Get billing status",
        tags=["Billing - Accounts"],
        responses={200: BillingStatusSerializer},
    )
    def get(self, request, account_id):
        account = (
            Account.objects.select_related("billing_payer").filter(pk=account_id).first()
        )
        if account is None:
            return error_response(
                NotFoundError("Account not found", details={"account_id": str(account_id)})
            )
        if not account.is_managed_by(request.user):
            return error_response(PermissionDeniedError("You cannot view this account"))

        standing = AccountStandingService(gateway=get_payment_gateway())
        return Response(BillingStatusSerializer(standing.billing_status(account)).data)


# =============================================================================
# Subscriptions
# =============================================================================


class SubscriptionActionView(APIView):
    """Shared lookup and ownership check for subscription actions."""

    permission_classes = [IsAuthenticated]

    def perform(self, state_machine: SubscriptionStateMachine, subscription_id):
        raise NotImplementedError

    def post(self, request, subscription_id):
        ledger = SubscriptionLedger()
        try:
            subscription = ledger.get(subscription_id)
            if not subscription.subscriber.is_managed_by(request.user):
                raise PermissionDeniedError(
                    "You cannot manage this subscription",
                    details={"subscription_id": str(subscription_id)},
                )
            state_machine = SubscriptionStateMachine(ledger=ledger, gateway=get_payment_gateway())
            subscription = self.perform(state_machine, subscription.pk)
        except BaseApplicationError as e:
            return error_response(e)

        return Response(SubscriptionStatusSerializer(subscription).data)


@extend_schema(
    summary="Cancel subscription at period end",
    description="Access continues until the current period ends.",
    tags=["Billing - Subscriptions"],
    request=None,
    responses={200: SubscriptionStatusSerializer},
)
class SubscriptionCancelView(SubscriptionActionView):
    """POST /api/v1/subscriptions/{subscription_id}/cancel"""

    def perform(self, state_machine, subscription_id):
        return state_machine.request_cancel(subscription_id)


@extend_schema(
    summary="Resume subscription",
    description=(
        "Undo a pending cancellation, or recover a subscription in its grace "
        "period. A subscription the gateway already ended is recreated."
    ),
    tags=["Billing - Subscriptions"],
    request=None,
    responses={200: SubscriptionStatusSerializer},
)
class SubscriptionResumeView(SubscriptionActionView):
    """POST /api/v1/subscriptions/{subscription_id}/resume"""

    def perform(self, state_machine, subscription_id):
        return state_machine.request_resume(subscription_id)
