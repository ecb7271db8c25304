"""
Pytest fixtures for billing tests.

The payment gateway is always a Mock built from the PaymentGateway
protocol; nothing here talks to Stripe.

Usage:
    def test_cancel(state_machine, active_subscription, gateway):
        state_machine.request_cancel(active_subscription.pk)
        gateway.cancel_at_period_end.assert_called_once()
"""

from datetime import datetime, timezone as dt_timezone
from unittest.mock import Mock

import pytest
from rest_framework.test import APIClient

from accounts.tests.factories import (
    ProviderAccountFactory,
    SubscriberAccountFactory,
    UserFactory,
)
from billing.adapters.gateway import Balance, CheckoutSession, PaymentGateway
from billing.ledger.services import SubscriptionLedger
from billing.services import (
    AccountStandingService,
    BillingTakeoverService,
    SubscriptionStateMachine,
)
from billing.state_machines import SubscriptionState
from billing.tests.factories import SubscriptionFactory
from billing.workers import ComplianceJobRunner

NOW = datetime(2025, 3, 1, 12, 0, tzinfo=dt_timezone.utc)


# =============================================================================
# Accounts
# =============================================================================


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def subscriber(db, user):
    """Active subscriber account owned by ``user``."""
    return SubscriberAccountFactory(user=user)


@pytest.fixture
def provider(db):
    """Active provider account with a 50% commission rate."""
    return ProviderAccountFactory(commission_rate_bps=5000)


# =============================================================================
# Subscriptions
# =============================================================================


@pytest.fixture
def active_subscription(db, subscriber, provider):
    return SubscriptionFactory(subscriber=subscriber, provider=provider)


@pytest.fixture
def past_due_subscription(db, subscriber, provider):
    return SubscriptionFactory(
        subscriber=subscriber,
        provider=provider,
        state=SubscriptionState.PAST_DUE,
        payment_failure_count=1,
    )


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock():
    """Fixed clock; tests move time with ``clock.return_value``."""
    return Mock(return_value=NOW)


@pytest.fixture
def gateway():
    """PaymentGateway mock with happy-path return values."""
    mock = Mock(spec=PaymentGateway)
    mock.create_subscription.return_value = "sub_new123"
    mock.create_checkout_session.return_value = CheckoutSession(
        id="cs_test_abc",
        url="https://checkout.stripe.com/c/pay/cs_test_abc",
    )
    mock.retrieve_account_balance.return_value = Balance(available_cents=12_500, pending_cents=3_000)
    return mock


@pytest.fixture
def ledger():
    return SubscriptionLedger()


@pytest.fixture
def state_machine(ledger, gateway, clock):
    return SubscriptionStateMachine(ledger=ledger, gateway=gateway, clock=clock)


@pytest.fixture
def takeover_service(ledger, gateway, clock):
    return BillingTakeoverService(ledger=ledger, gateway=gateway, clock=clock)


@pytest.fixture
def standing_service(gateway, clock):
    return AccountStandingService(gateway=gateway, clock=clock)


@pytest.fixture
def job_runner(ledger, clock):
    return ComplianceJobRunner(
        ledger=ledger,
        state_machine=SubscriptionStateMachine(ledger=ledger, clock=clock),
        batch_size=2,
        clock=clock,
    )


# =============================================================================
# HTTP
# =============================================================================


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def authenticated_client(api_client, user):
    api_client.force_authenticate(user=user)
    return api_client


@pytest.fixture
def patched_gateway(gateway, monkeypatch):
    """Make every view use the ``gateway`` mock."""
    monkeypatch.setattr("billing.views.get_payment_gateway", lambda: gateway)
    monkeypatch.setattr("billing.webhooks.views.get_payment_gateway", lambda: gateway)
    return gateway
