"""
Tests for webhook handlers.

Events go through the idempotency guard and dispatch_event, as they do in
the webhook view, with the gateway mocked.
"""

from datetime import timedelta

import pytest

from billing.exceptions import UnmatchedPaymentError
from billing.models import CommissionRecord, PaymentEvent, Subscription
from billing.state_machines import PaymentEventType, SubscriptionState, TakeoverState
from billing.tests.conftest import NOW
from billing.tests.factories import BillingTakeoverFactory, SubscriptionFactory, parsed_event
from billing.webhooks.handlers import (
    WEBHOOK_HANDLERS,
    WebhookServices,
    dispatch_event,
)
from billing.webhooks.idempotency import EventIdempotencyGuard


@pytest.fixture
def services(ledger, state_machine, takeover_service):
    return WebhookServices(ledger=ledger, state_machine=state_machine, takeovers=takeover_service)


@pytest.fixture
def deliver(services):
    """Run one event through the guard and the handler registry."""

    def _deliver(event):
        return EventIdempotencyGuard().process(
            event,
            lambda payment_event: dispatch_event(event, payment_event, services),
        )

    return _deliver


class TestRegistry:
    def test_every_money_event_has_a_handler(self):
        for event_type in (
            PaymentEventType.CHARGE_SUCCEEDED,
            PaymentEventType.CHARGE_FAILED,
            PaymentEventType.SUBSCRIPTION_UPDATED,
            PaymentEventType.SUBSCRIPTION_DELETED,
            PaymentEventType.CHECKOUT_COMPLETED,
        ):
            assert event_type in WEBHOOK_HANDLERS

    def test_unsupported_has_no_handler(self):
        assert PaymentEventType.UNSUPPORTED not in WEBHOOK_HANDLERS


@pytest.mark.django_db
class TestChargeHandlers:
    """Tests for charge_succeeded and charge_failed."""

    def test_charge_succeeded_posts_commission(self, deliver, active_subscription):
        outcome = deliver(parsed_event(PaymentEventType.CHARGE_SUCCEEDED, active_subscription, NOW))

        assert outcome.result.success
        record = CommissionRecord.objects.get(subscription=active_subscription)
        assert record.payment_event == outcome.payment_event
        assert record.gross_cents == 2000

    def test_duplicate_delivery_posts_once(self, deliver, active_subscription):
        event = parsed_event(PaymentEventType.CHARGE_SUCCEEDED, active_subscription, NOW)

        deliver(event)
        outcome = deliver(event)

        assert outcome.duplicate
        assert CommissionRecord.objects.filter(subscription=active_subscription).count() == 1

    def test_charge_failed_twice_enters_grace(self, deliver, ledger, active_subscription):
        deliver(parsed_event(PaymentEventType.CHARGE_FAILED, active_subscription, NOW))
        deliver(parsed_event(PaymentEventType.CHARGE_FAILED, active_subscription, NOW + timedelta(days=7)))

        subscription = ledger.get(active_subscription.pk)
        assert subscription.state == SubscriptionState.GRACE_PERIOD
        assert subscription.grace_period_ends_at == NOW + timedelta(days=187)

    def test_unknown_subscription_is_acknowledged(self, deliver, db):
        event = parsed_event(
            PaymentEventType.CHARGE_FAILED,
            gateway_subscription_id="sub_unknown",
            gateway_payment_id="in_x",
        )

        outcome = deliver(event)

        assert not outcome.result.success
        assert outcome.result.error_code == "UNKNOWN_SUBSCRIPTION"

    def test_unmatched_successful_charge_is_not_acknowledged(self, deliver, db):
        event = parsed_event(
            PaymentEventType.CHARGE_SUCCEEDED,
            gateway_subscription_id="sub_unknown",
            gateway_payment_id="in_lost",
        )

        with pytest.raises(UnmatchedPaymentError):
            deliver(event)

        assert not PaymentEvent.objects.filter(gateway_event_id=event.event_id).exists()

    def test_first_charge_creates_subscription_from_metadata(self, deliver, subscriber, provider):
        event = parsed_event(
            PaymentEventType.CHARGE_SUCCEEDED,
            gateway_subscription_id="sub_fresh",
            amount_cents=800,
            metadata={
                "subscriber_account_id": str(subscriber.pk),
                "provider_account_id": str(provider.pk),
                "deliverable_id": "gallery-9",
            },
            occurred_at=NOW,
        )

        deliver(event)

        subscription = Subscription.objects.get(gateway_subscription_id="sub_fresh")
        assert subscription.state == SubscriptionState.ACTIVE
        assert subscription.commission_rate_bps == provider.commission_rate_bps
        assert subscription.commission_records.get().provider_cents == 400


@pytest.mark.django_db
class TestSubscriptionHandlers:
    def test_updated_syncs_period_and_flag(self, deliver, ledger, active_subscription):
        period_end = NOW + timedelta(days=60)

        deliver(
            parsed_event(
                PaymentEventType.SUBSCRIPTION_UPDATED,
                active_subscription,
                NOW,
                period_end=period_end,
                cancel_at_period_end=True,
            )
        )

        subscription = ledger.get(active_subscription.pk)
        assert subscription.current_period_end == period_end
        assert subscription.cancel_at_period_end
        assert subscription.state == SubscriptionState.ACTIVE

    def test_deleted_marks_cancel_pending(self, deliver, ledger, active_subscription):
        deliver(
            parsed_event(
                PaymentEventType.SUBSCRIPTION_DELETED,
                active_subscription,
                NOW,
                period_end=NOW + timedelta(days=5),
                ended_at=NOW,
            )
        )

        subscription = ledger.get(active_subscription.pk)
        assert subscription.state == SubscriptionState.CANCEL_PENDING
        assert subscription.gateway_ended_at == NOW
        assert subscription.is_entitled


@pytest.mark.django_db
class TestCheckoutCompleted:
    def test_creates_trialing_subscription(self, deliver, subscriber):
        event = parsed_event(
            PaymentEventType.CHECKOUT_COMPLETED,
            gateway_subscription_id="sub_checkout",
            customer_id="cus_checkout",
            metadata={"subscriber_account_id": str(subscriber.pk), "deliverable_id": "gallery-3"},
        )

        outcome = deliver(event)

        assert outcome.result.data["created"] is True
        subscription = Subscription.objects.get(gateway_subscription_id="sub_checkout")
        assert subscription.state == SubscriptionState.TRIALING
        assert subscription.provider is None

    def test_existing_subscription_not_recreated(self, deliver, active_subscription):
        outcome = deliver(parsed_event(PaymentEventType.CHECKOUT_COMPLETED, active_subscription))

        assert outcome.result.data == {
            "subscription_id": str(active_subscription.pk),
            "created": False,
        }

    def test_resubscribe_rebinds_suspended_subscription(
        self, deliver, ledger, gateway, subscriber, provider, django_capture_on_commit_callbacks
    ):
        """Coming back to a deliverable whose subscription was suspended reuses that row."""
        suspended = SubscriptionFactory(
            subscriber=subscriber,
            provider=provider,
            deliverable_id="gallery-1",
            gateway_subscription_id="sub_old",
            state=SubscriptionState.SUSPENDED,
            access_suspended=True,
            payment_failure_count=4,
        )
        metadata = {
            "subscriber_account_id": str(subscriber.pk),
            "provider_account_id": str(provider.pk),
            "deliverable_id": "gallery-1",
        }

        with django_capture_on_commit_callbacks(execute=True):
            checkout = deliver(
                parsed_event(
                    PaymentEventType.CHECKOUT_COMPLETED,
                    gateway_subscription_id="sub_new",
                    metadata=metadata,
                )
            )
        charge = deliver(
            parsed_event(
                PaymentEventType.CHARGE_SUCCEEDED,
                gateway_subscription_id="sub_new",
                amount_cents=2000,
                metadata=metadata,
                occurred_at=NOW,
            )
        )

        assert checkout.result.data == {"subscription_id": str(suspended.pk), "created": False}
        assert charge.result.success
        subscription = ledger.get(suspended.pk)
        assert subscription.gateway_subscription_id == "sub_new"
        assert subscription.state == SubscriptionState.ACTIVE
        assert not subscription.access_suspended
        assert subscription.commission_records.count() == 1
        assert Subscription.objects.filter(subscriber=subscriber, deliverable_id="gallery-1").count() == 1
        gateway.cancel_at_period_end.assert_called_once_with("sub_old")

    def test_checkout_beside_active_subscription_is_not_rebound(self, deliver, ledger, active_subscription):
        outcome = deliver(
            parsed_event(
                PaymentEventType.CHECKOUT_COMPLETED,
                gateway_subscription_id="sub_duplicate",
                metadata={
                    "subscriber_account_id": str(active_subscription.subscriber_id),
                    "deliverable_id": active_subscription.deliverable_id,
                },
            )
        )

        assert not outcome.result.success
        subscription = ledger.get(active_subscription.pk)
        assert subscription.gateway_subscription_id == active_subscription.gateway_subscription_id

    def test_incomplete_metadata_is_ignored(self, deliver, db):
        event = parsed_event(
            PaymentEventType.CHECKOUT_COMPLETED,
            gateway_subscription_id="sub_orphan",
            metadata={"deliverable_id": "gallery-3"},
        )

        outcome = deliver(event)

        assert not outcome.result.success
        assert not Subscription.objects.filter(gateway_subscription_id="sub_orphan").exists()

    def test_takeover_checkout_records_subscription(self, deliver):
        takeover = BillingTakeoverFactory()

        deliver(
            parsed_event(
                PaymentEventType.CHECKOUT_COMPLETED,
                gateway_subscription_id="sub_takeover",
                metadata={"takeover_id": str(takeover.pk)},
            )
        )

        takeover.refresh_from_db(fields=["gateway_subscription_id"])
        assert takeover.gateway_subscription_id == "sub_takeover"


@pytest.mark.django_db
class TestTakeoverPayments:
    def test_charge_succeeded_completes_takeover(self, deliver):
        takeover = BillingTakeoverFactory()

        outcome = deliver(
            parsed_event(
                PaymentEventType.CHARGE_SUCCEEDED,
                gateway_subscription_id="sub_takeover",
                metadata={"takeover_id": str(takeover.pk)},
            )
        )

        assert outcome.result.success
        assert outcome.result.data["state"] == TakeoverState.COMPLETED

    def test_charge_failed_leaves_takeover_pending(self, deliver):
        takeover = BillingTakeoverFactory()

        outcome = deliver(
            parsed_event(
                PaymentEventType.CHARGE_FAILED,
                gateway_subscription_id="sub_takeover",
                metadata={"takeover_id": str(takeover.pk)},
            )
        )

        assert outcome.result.success
        assert type(takeover).objects.get(pk=takeover.pk).state == TakeoverState.PENDING

    def test_first_payment_activates_covered_subscription(self, deliver, ledger, past_due_subscription):
        takeover = BillingTakeoverFactory(
            account=past_due_subscription.subscriber,
            subscription=past_due_subscription,
        )

        outcome = deliver(
            parsed_event(
                PaymentEventType.CHARGE_SUCCEEDED,
                gateway_subscription_id="sub_takeover",
                amount_cents=2000,
                metadata={"takeover_id": str(takeover.pk), "subscription_id": str(past_due_subscription.pk)},
                occurred_at=NOW,
            )
        )

        assert outcome.result.data["state"] == TakeoverState.COMPLETED
        subscription = ledger.get(past_due_subscription.pk)
        assert subscription.gateway_subscription_id == "sub_takeover"
        assert subscription.state == SubscriptionState.ACTIVE
        assert subscription.commission_records.get().payment_event == outcome.payment_event

    def test_renewal_after_takeover_posts_commission(self, deliver, ledger, past_due_subscription):
        takeover = BillingTakeoverFactory(
            account=past_due_subscription.subscriber,
            subscription=past_due_subscription,
        )
        metadata = {"takeover_id": str(takeover.pk), "subscription_id": str(past_due_subscription.pk)}
        deliver(
            parsed_event(
                PaymentEventType.CHARGE_SUCCEEDED,
                gateway_subscription_id="sub_takeover",
                metadata=metadata,
                occurred_at=NOW,
            )
        )

        failure = deliver(
            parsed_event(
                PaymentEventType.CHARGE_FAILED,
                gateway_subscription_id=past_due_subscription.gateway_subscription_id,
                occurred_at=NOW + timedelta(days=1),
            )
        )
        renewal = deliver(
            parsed_event(
                PaymentEventType.CHARGE_SUCCEEDED,
                gateway_subscription_id="sub_takeover",
                metadata=metadata,
                occurred_at=NOW + timedelta(days=30),
            )
        )

        assert failure.result.error_code == "UNKNOWN_SUBSCRIPTION"
        assert renewal.result.success
        subscription = ledger.get(past_due_subscription.pk)
        assert subscription.state == SubscriptionState.ACTIVE
        assert subscription.payment_failure_count == 0
        assert subscription.commission_records.count() == 2
        assert CommissionRecord.objects.get(payment_event=renewal.payment_event).gross_cents == 2000
