"""
Tests for SubscriptionLedger.

Tests cover:
- Subscription creation with a rate snapshot
- Conditional commits and stale writes
- Commission posting (withheld for suspended providers, no provider)
- Account status updates and their preconditions
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from accounts.choices import AccountStatus
from accounts.models import Account
from billing.exceptions import StaleRecordError
from billing.state_machines import CommissionStatus, SubscriptionState
from billing.tests.factories import PaymentEventFactory, SubscriptionFactory
from core.exceptions import ConflictError, NotFoundError


@pytest.mark.django_db
class TestCreateSubscription:
    """Tests for SubscriptionLedger.create_subscription."""

    def test_snapshots_provider_rate(self, ledger, subscriber, provider):
        """Later rate changes on the provider do not touch the subscription."""
        subscription = ledger.create_subscription(
            subscriber=subscriber,
            provider=provider,
            deliverable_id="gallery-7",
            gateway_subscription_id="sub_snapshot",
            amount_cents=800,
        )

        Account.objects.filter(pk=provider.pk).update(commission_rate_bps=9000)

        subscription = ledger.get(subscription.pk)
        assert subscription.commission_rate_bps == 5000
        assert subscription.state == SubscriptionState.TRIALING
        assert subscription.version == 1

    def test_without_provider_rate_is_zero(self, ledger, subscriber):
        subscription = ledger.create_subscription(
            subscriber=subscriber,
            deliverable_id="gallery-7",
            gateway_subscription_id="sub_noprovider",
        )

        assert subscription.provider is None
        assert subscription.commission_rate_bps == 0

    def test_duplicate_live_subscription_conflicts(self, ledger, active_subscription):
        with pytest.raises(ConflictError) as exc_info:
            ledger.create_subscription(
                subscriber=active_subscription.subscriber,
                deliverable_id=active_subscription.deliverable_id,
                gateway_subscription_id="sub_other",
            )

        assert exc_info.value.error_code == "SUBSCRIPTION_EXISTS"


@pytest.mark.django_db
class TestGet:
    def test_unknown_id_raises_not_found(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get("00000000-0000-0000-0000-000000000000")

    def test_malformed_id_raises_not_found(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.get("not-a-uuid")

    def test_get_by_gateway_id(self, ledger, active_subscription):
        found = ledger.get_by_gateway_id(active_subscription.gateway_subscription_id)

        assert found == active_subscription
        assert ledger.get_by_gateway_id("sub_missing") is None


@pytest.mark.django_db
class TestCommit:
    """Tests for conditional writes."""

    def test_commit_bumps_version(self, ledger, active_subscription):
        subscription = ledger.get(active_subscription.pk)

        subscription.mark_past_due()
        updated = ledger.commit(
            subscription,
            SubscriptionState.ACTIVE,
            1,
            {"payment_failure_count": 1},
        )

        assert updated.state == SubscriptionState.PAST_DUE
        assert updated.version == 2
        assert updated.payment_failure_count == 1

    def test_stale_version_raises(self, ledger, active_subscription):
        """A writer holding an old version loses."""
        first = ledger.get(active_subscription.pk)
        second = ledger.get(active_subscription.pk)

        first.mark_past_due()
        ledger.commit(first, SubscriptionState.ACTIVE, 1, {})

        second.mark_past_due()
        with pytest.raises(StaleRecordError):
            ledger.commit(second, SubscriptionState.ACTIVE, 1, {})

        assert ledger.get(active_subscription.pk).version == 2

    def test_stale_state_raises(self, ledger, active_subscription):
        subscription = ledger.get(active_subscription.pk)

        with pytest.raises(StaleRecordError):
            ledger.commit(subscription, SubscriptionState.PAST_DUE, 1, {})


    def test_rebind_gateway_subscription_keeps_state(self, ledger, active_subscription):
        subscription = ledger.get(active_subscription.pk)

        updated = ledger.rebind_gateway_subscription(subscription, "sub_replacement")

        assert updated.gateway_subscription_id == "sub_replacement"
        assert updated.state == SubscriptionState.ACTIVE
        assert updated.version == 2
        assert ledger.get_by_gateway_id("sub_replacement").pk == active_subscription.pk


@pytest.mark.django_db
class TestPostCommission:
    """Tests for SubscriptionLedger.post_commission."""

    def test_posts_split_with_snapshot_rate(self, ledger, active_subscription):
        event = PaymentEventFactory(subscription=active_subscription, amount_cents=2000)

        record = ledger.post_commission(active_subscription, event, gross_cents=2000)

        assert record.status == CommissionStatus.POSTED
        assert record.provider == active_subscription.provider
        assert record.provider_cents == 1000
        assert record.platform_cents == 1000
        assert record.commission_rate_bps == 5000
        assert record.gateway_payment_id == event.gateway_payment_id
        assert ledger.has_commission_for_payment(event.gateway_payment_id)

    def test_suspended_provider_is_withheld(self, ledger, active_subscription):
        Account.objects.filter(pk=active_subscription.provider_id).update(
            status=AccountStatus.SUSPENDED,
            suspended_at=timezone.now(),
        )
        event = PaymentEventFactory(subscription=active_subscription)

        record = ledger.post_commission(active_subscription, event, gross_cents=2000)

        assert record.status == CommissionStatus.WITHHELD
        assert record.provider_cents == 1000

    def test_no_provider_platform_keeps_net(self, ledger, subscriber):
        subscription = SubscriptionFactory(subscriber=subscriber, provider=None)
        event = PaymentEventFactory(subscription=subscription)

        record = ledger.post_commission(subscription, event, gross_cents=2000, fee_cents=88)

        assert record.provider is None
        assert record.provider_cents == 0
        assert record.platform_cents == 1912

    def test_second_record_for_same_invoice_conflicts(self, ledger, active_subscription):
        """A replayed invoice under a new event id cannot post twice."""
        first = PaymentEventFactory(subscription=active_subscription, gateway_payment_id="in_dup")
        ledger.post_commission(active_subscription, first, gross_cents=2000)
        second = PaymentEventFactory(subscription=active_subscription, gateway_payment_id="in_dup")

        with pytest.raises(ConflictError) as exc_info:
            ledger.post_commission(active_subscription, second, gross_cents=2000)

        assert exc_info.value.error_code == "COMMISSION_EXISTS"
        assert active_subscription.commission_records.count() == 1

    def test_has_commission_for_blank_payment_id(self, ledger):
        assert not ledger.has_commission_for_payment(None)
        assert not ledger.has_commission_for_payment("")


@pytest.mark.django_db
class TestAccountStatus:
    """Tests for account status writes and their idempotence."""

    def test_mark_payer_overdue_keeps_first_timestamp(self, ledger, subscriber):
        first = timezone.now() - timedelta(days=10)

        assert ledger.mark_payer_overdue(subscriber.pk, first)
        assert not ledger.mark_payer_overdue(subscriber.pk, timezone.now())

        subscriber = Account.objects.get(pk=subscriber.pk)
        assert subscriber.payment_overdue_since == first

    def test_restore_payer_lifts_suspension(self, ledger, provider):
        Account.objects.filter(pk=provider.pk).update(
            status=AccountStatus.SUSPENDED,
            suspended_at=timezone.now(),
            payment_overdue_since=timezone.now() - timedelta(days=95),
        )

        assert ledger.restore_payer_account(provider.pk)

        provider = Account.objects.get(pk=provider.pk)
        assert provider.status == AccountStatus.ACTIVE
        assert provider.suspended_at is None
        assert provider.payment_overdue_since is None

    def test_restore_payer_leaves_deactivated(self, ledger, subscriber):
        Account.objects.filter(pk=subscriber.pk).update(status=AccountStatus.DEACTIVATED)

        assert not ledger.restore_payer_account(subscriber.pk)
        assert Account.objects.get(pk=subscriber.pk).status == AccountStatus.DEACTIVATED

    def test_suspend_provider_once(self, ledger, provider):
        now = timezone.now()

        assert ledger.suspend_provider(provider.pk, now)
        assert not ledger.suspend_provider(provider.pk, now + timedelta(days=1))
        assert Account.objects.get(pk=provider.pk).suspended_at == now

    def test_suspend_provider_ignores_subscribers(self, ledger, subscriber):
        assert not ledger.suspend_provider(subscriber.pk, timezone.now())

    def test_deactivate_subscriber_once(self, ledger, subscriber):
        now = timezone.now()

        assert ledger.deactivate_subscriber(subscriber.pk, now)
        assert not ledger.deactivate_subscriber(subscriber.pk, now + timedelta(days=1))

        subscriber = Account.objects.get(pk=subscriber.pk)
        assert subscriber.status == AccountStatus.DEACTIVATED
        assert subscriber.deactivated_at == now

    def test_has_entitled_subscription(self, ledger, subscriber):
        SubscriptionFactory(subscriber=subscriber, state=SubscriptionState.SUSPENDED)
        assert not ledger.has_entitled_subscription(subscriber.pk)

        SubscriptionFactory(subscriber=subscriber, state=SubscriptionState.GRACE_PERIOD)
        assert ledger.has_entitled_subscription(subscriber.pk)

    def test_restore_access_for_account(self, ledger, subscriber):
        suspended = SubscriptionFactory(
            subscriber=subscriber,
            state=SubscriptionState.SUSPENDED,
            access_suspended=True,
            access_suspended_at=timezone.now(),
            payment_failure_count=3,
            last_payment_failure_at=timezone.now(),
        )
        cancelled = SubscriptionFactory(
            subscriber=subscriber,
            state=SubscriptionState.CANCELLED,
            access_suspended=True,
        )

        assert ledger.restore_access_for_account(subscriber.pk) == 1

        suspended = ledger.get(suspended.pk)
        assert not suspended.access_suspended
        assert suspended.payment_failure_count == 0
        assert suspended.last_payment_failure_at is None
        assert suspended.state == SubscriptionState.SUSPENDED
        assert ledger.get(cancelled.pk).access_suspended
