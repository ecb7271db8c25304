"""
Tests for BillingTakeoverService.

Tests cover:
- Initiation: eligibility, permissions, checkout creation and failure
- Completion: payer pointer, restored access, rebound subscription, audit record
- Two candidates racing for the same account
- full_primary ownership transfer
"""

from datetime import timedelta

import pytest
from django.db import transaction

from accounts.choices import AccountStatus
from accounts.models import Account
from accounts.tests.factories import (
    ProviderAccountFactory,
    SubscriberAccountFactory,
    UserFactory,
)
from billing.exceptions import PermanentGatewayError, TransientGatewayError
from billing.models import BillingTakeover, TakeoverRecord
from billing.state_machines import (
    SubscriptionState,
    TakeoverReason,
    TakeoverState,
    TakeoverType,
)
from billing.tests.conftest import NOW
from billing.tests.factories import SubscriptionFactory
from core.exceptions import ConflictError, NotFoundError, PermissionDeniedError, ValidationError


@pytest.fixture
def target(db):
    """Account whose owner can no longer pay."""
    return SubscriberAccountFactory()


@pytest.fixture
def candidate_user(db):
    return UserFactory()


@pytest.fixture
def candidate(candidate_user):
    return SubscriberAccountFactory(user=candidate_user)


def initiate(service, target, candidate, takeover_type=TakeoverType.BILLING_ONLY, **kwargs):
    return service.initiate(
        account_id=target.pk,
        candidate_id=candidate.pk,
        takeover_type=takeover_type,
        reason=kwargs.pop("reason", TakeoverReason.FINANCIAL),
        requested_by=kwargs.pop("requested_by", candidate.user),
        **kwargs,
    )


def complete(service, takeover, gateway_subscription_id="sub_takeover"):
    with transaction.atomic():
        return service.complete(takeover.pk, gateway_subscription_id)


@pytest.mark.django_db
class TestInitiate:
    """Tests for BillingTakeoverService.initiate."""

    def test_opens_checkout(self, takeover_service, gateway, target, candidate):
        takeover = initiate(takeover_service, target, candidate)

        assert takeover.state == TakeoverState.PENDING
        assert takeover.checkout_session_id == "cs_test_abc"
        assert takeover.checkout_url.endswith("cs_test_abc")
        assert takeover.expected_previous_payer is None

        call = gateway.create_checkout_session.call_args.kwargs
        assert call["customer_id"] == candidate.gateway_customer_id
        assert call["metadata"]["takeover_id"] == str(takeover.pk)
        assert call["idempotency_key"].startswith(f"takeover_checkout:{takeover.pk}:")

    def test_price_follows_latest_subscription(self, takeover_service, gateway, target, candidate):
        SubscriptionFactory(subscriber=target, gateway_price_id="price_gallery")

        initiate(takeover_service, target, candidate)

        assert gateway.create_checkout_session.call_args.kwargs["price_id"] == "price_gallery"

    def test_price_defaults_from_settings(self, takeover_service, gateway, target, candidate):
        initiate(takeover_service, target, candidate)

        assert gateway.create_checkout_session.call_args.kwargs["price_id"] == "price_default"

    def test_records_current_payer(self, takeover_service, target, candidate):
        payer = SubscriberAccountFactory()
        Account.objects.filter(pk=target.pk).update(billing_payer=payer)

        takeover = initiate(takeover_service, target, candidate)

        assert takeover.expected_previous_payer_id == payer.pk

    def test_candidate_must_belong_to_caller(self, takeover_service, target, candidate):
        with pytest.raises(PermissionDeniedError):
            initiate(takeover_service, target, candidate, requested_by=UserFactory())

        assert not BillingTakeover.objects.exists()

    def test_unknown_account(self, takeover_service, candidate):
        with pytest.raises(NotFoundError):
            takeover_service.initiate(
                account_id="not-a-uuid",
                candidate_id=candidate.pk,
                takeover_type=TakeoverType.BILLING_ONLY,
                reason=TakeoverReason.HEALTH,
                requested_by=candidate.user,
            )

    @pytest.mark.parametrize(
        "make_candidate",
        [
            lambda user: SubscriberAccountFactory(user=user, status=AccountStatus.SUSPENDED),
            lambda user: ProviderAccountFactory(user=user),
        ],
        ids=["suspended", "provider"],
    )
    def test_ineligible_candidate(self, takeover_service, target, candidate_user, make_candidate):
        candidate = make_candidate(candidate_user)

        with pytest.raises(ValidationError) as exc_info:
            initiate(takeover_service, target, candidate)

        assert exc_info.value.error_code == "TAKEOVER_NOT_ELIGIBLE"

    def test_cannot_take_over_self(self, takeover_service, candidate):
        with pytest.raises(ValidationError):
            initiate(takeover_service, candidate, candidate)

    def test_deactivated_account_ineligible(self, takeover_service, target, candidate):
        Account.objects.filter(pk=target.pk).update(status=AccountStatus.DEACTIVATED)

        with pytest.raises(ValidationError):
            initiate(takeover_service, target, candidate)

    def test_open_takeover_conflicts(self, takeover_service, target, candidate):
        initiate(takeover_service, target, candidate)

        with pytest.raises(ConflictError) as exc_info:
            initiate(takeover_service, target, candidate)

        assert exc_info.value.error_code == "TAKEOVER_IN_PROGRESS"

    def test_checkout_failure_marks_failed(self, takeover_service, gateway, target, candidate):
        gateway.create_checkout_session.side_effect = TransientGatewayError("timeout")

        with pytest.raises(TransientGatewayError):
            initiate(takeover_service, target, candidate)

        takeover = BillingTakeover.objects.get()
        assert takeover.state == TakeoverState.FAILED
        assert "checkout failed" in takeover.failure_reason

        # A failed attempt does not block a new one
        gateway.create_checkout_session.side_effect = None
        assert initiate(takeover_service, target, candidate).state == TakeoverState.PENDING


@pytest.mark.django_db
class TestComplete:
    """Tests for BillingTakeoverService.complete."""

    def test_moves_payer_and_restores_access(self, takeover_service, ledger, target, candidate):
        suspended = SubscriptionFactory(
            subscriber=target,
            state=SubscriptionState.SUSPENDED,
            access_suspended=True,
            access_suspended_at=NOW - timedelta(days=2),
            payment_failure_count=4,
            last_payment_failure_at=NOW - timedelta(days=2),
        )
        takeover = initiate(takeover_service, target, candidate, reason_text="covering for mum")

        result = complete(takeover_service, takeover)

        assert result.success
        target = Account.objects.get(pk=target.pk)
        assert target.billing_payer_id == candidate.pk
        assert target.billing_payer_since == NOW
        assert target.user_id != candidate.user.pk

        subscription = ledger.get(suspended.pk)
        assert not subscription.access_suspended
        assert subscription.payment_failure_count == 0
        assert subscription.last_payment_failure_at is None
        assert subscription.gateway_subscription_id == "sub_takeover"

        record = TakeoverRecord.objects.get(takeover=takeover)
        assert record.previous_payer is None
        assert record.new_payer == candidate
        assert record.previous_owner == target.user
        assert record.reason_text == "covering for mum"
        assert record.gateway_subscription_id == "sub_takeover"

        takeover = BillingTakeover.objects.get(pk=takeover.pk)
        assert takeover.state == TakeoverState.COMPLETED

    def test_rebinds_covered_subscription(
        self, takeover_service, gateway, ledger, target, candidate, django_capture_on_commit_callbacks
    ):
        """The candidate's checkout subscription bills the account's subscription from now on."""
        covered = SubscriptionFactory(
            subscriber=target,
            gateway_subscription_id="sub_family",
            state=SubscriptionState.PAST_DUE,
            payment_failure_count=1,
        )
        takeover = initiate(takeover_service, target, candidate)
        metadata = gateway.create_checkout_session.call_args.kwargs["metadata"]
        assert metadata["subscription_id"] == str(covered.pk)
        assert not takeover_service.bills_subscription(takeover.pk)

        with django_capture_on_commit_callbacks(execute=True):
            result = complete(takeover_service, takeover, "sub_relative")

        assert result.data["subscription_id"] == str(covered.pk)
        subscription = ledger.get(covered.pk)
        assert subscription.gateway_subscription_id == "sub_relative"
        assert subscription.state == SubscriptionState.PAST_DUE
        assert ledger.get_by_gateway_id("sub_family") is None
        assert takeover_service.bills_subscription(takeover.pk)
        gateway.cancel_at_period_end.assert_called_once_with("sub_family")

    def test_bills_subscription_needs_covered_subscription(self, takeover_service, target, candidate):
        takeover = initiate(takeover_service, target, candidate)
        complete(takeover_service, takeover)

        assert not takeover_service.bills_subscription(takeover.pk)
        assert not takeover_service.bills_subscription("not-a-uuid")

    def test_full_primary_transfers_ownership(self, takeover_service, target, candidate):
        original_owner = target.user
        takeover = initiate(takeover_service, target, candidate, TakeoverType.FULL_PRIMARY)

        complete(takeover_service, takeover)

        target = Account.objects.get(pk=target.pk)
        assert target.user_id == candidate.user.pk
        assert target.original_owner_id == original_owner.pk
        assert target.is_managed_by(candidate.user)
        assert not target.is_managed_by(original_owner)

    def test_replay_is_noop(self, takeover_service, target, candidate):
        takeover = initiate(takeover_service, target, candidate)
        complete(takeover_service, takeover)

        result = complete(takeover_service, takeover)

        assert result.success
        assert TakeoverRecord.objects.filter(takeover=takeover).count() == 1

    def test_unknown_takeover(self, takeover_service, db):
        with transaction.atomic():
            result = takeover_service.complete("00000000-0000-0000-0000-000000000000")

        assert result.error_code == "TAKEOVER_NOT_FOUND"

    def test_second_candidate_loses(
        self, takeover_service, gateway, target, candidate, django_capture_on_commit_callbacks
    ):
        """Both candidates pay; the first completion wins, the second fails."""
        rival = SubscriberAccountFactory()
        first = initiate(takeover_service, target, candidate)
        second = initiate(takeover_service, target, rival)

        complete(takeover_service, first, "sub_first")
        with django_capture_on_commit_callbacks(execute=True):
            result = complete(takeover_service, second, "sub_second")

        assert not result.success
        assert result.error_code == "TAKEOVER_ALREADY_CLAIMED"
        assert Account.objects.get(pk=target.pk).billing_payer_id == candidate.pk
        assert BillingTakeover.objects.get(pk=second.pk).state == TakeoverState.FAILED
        assert not TakeoverRecord.objects.filter(takeover=second).exists()
        gateway.cancel_at_period_end.assert_called_once_with("sub_second")

    def test_orphan_cancel_failure_is_logged(
        self, takeover_service, gateway, target, candidate, django_capture_on_commit_callbacks
    ):
        gateway.cancel_at_period_end.side_effect = PermanentGatewayError("no such subscription")
        rival = SubscriberAccountFactory()
        first = initiate(takeover_service, target, candidate)
        second = initiate(takeover_service, target, rival)
        complete(takeover_service, first)

        with django_capture_on_commit_callbacks(execute=True):
            result = complete(takeover_service, second, "sub_second")

        assert result.error_code == "TAKEOVER_ALREADY_CLAIMED"

    def test_payment_for_failed_takeover_ignored(self, takeover_service, target, candidate):
        takeover = initiate(takeover_service, target, candidate)
        BillingTakeover.objects.filter(pk=takeover.pk).update(state=TakeoverState.FAILED)

        result = complete(takeover_service, takeover)

        assert result.error_code == "TAKEOVER_FAILED"
        assert Account.objects.get(pk=target.pk).billing_payer is None
