"""
Tests for StripeAdapter.

Stripe is never called: module-level stripe functions are patched and
parse_event is fed event bodies shaped like Stripe's.
"""

from datetime import datetime, timezone as dt_timezone
from unittest.mock import MagicMock, patch

import pytest
import stripe

from billing.adapters.stripe_adapter import IdempotencyKeyGenerator, StripeAdapter
from billing.exceptions import (
    PermanentGatewayError,
    SignatureError,
    TransientGatewayError,
)
from billing.state_machines import PaymentEventType
from core.exceptions import ValidationError

CREATED = 1_740_830_400  # 2025-03-01T12:00:00Z
PERIOD_END = 1_743_508_800  # 2025-04-01T12:00:00Z


def stripe_event(event_type, obj, event_id="evt_123"):
    return {"id": event_id, "type": event_type, "created": CREATED, "data": {"object": obj}}


@pytest.fixture
def adapter(settings):
    settings.STRIPE_SECRET_KEY = "sk_test_123"
    settings.STRIPE_WEBHOOK_SECRET = "whsec_test"
    return StripeAdapter()


class TestParseEvent:
    """Tests for StripeAdapter.parse_event."""

    def test_invoice_paid(self):
        event = StripeAdapter.parse_event(
            stripe_event(
                "invoice.paid",
                {
                    "id": "in_1",
                    "subscription": "sub_1",
                    "customer": "cus_1",
                    "amount_paid": 800,
                    "currency": "usd",
                    "lines": {"data": [{"period": {"end": PERIOD_END}}]},
                    "subscription_details": {"metadata": {"subscription_id": "abc"}},
                },
            )
        )

        assert event.event_type == PaymentEventType.CHARGE_SUCCEEDED
        assert event.occurred_at == datetime(2025, 3, 1, 12, 0, tzinfo=dt_timezone.utc)
        assert event.gateway_subscription_id == "sub_1"
        assert event.gateway_payment_id == "in_1"
        assert event.amount_cents == 800
        assert event.fee_cents == 0
        assert event.period_end == datetime(2025, 4, 1, 12, 0, tzinfo=dt_timezone.utc)
        assert event.metadata == {"subscription_id": "abc"}

    def test_invoice_payment_failed_uses_amount_due(self):
        event = StripeAdapter.parse_event(
            stripe_event(
                "invoice.payment_failed",
                {"id": "in_2", "subscription": {"id": "sub_2"}, "amount_due": 1200},
            )
        )

        assert event.event_type == PaymentEventType.CHARGE_FAILED
        assert event.gateway_subscription_id == "sub_2"
        assert event.amount_cents == 1200

    def test_invoice_subscription_from_parent(self):
        """Newer API versions nest the subscription under parent."""
        event = StripeAdapter.parse_event(
            stripe_event(
                "invoice.paid",
                {
                    "id": "in_3",
                    "amount_paid": 500,
                    "parent": {
                        "subscription_details": {
                            "subscription": "sub_3",
                            "metadata": {"takeover_id": "t-1"},
                        }
                    },
                },
            )
        )

        assert event.gateway_subscription_id == "sub_3"
        assert event.metadata["takeover_id"] == "t-1"

    def test_subscription_deleted(self):
        event = StripeAdapter.parse_event(
            stripe_event(
                "customer.subscription.deleted",
                {
                    "id": "sub_4",
                    "customer": "cus_4",
                    "cancel_at_period_end": True,
                    "current_period_end": PERIOD_END,
                    "ended_at": CREATED,
                    "items": {"data": [{"price": {"unit_amount": 900}}]},
                },
            )
        )

        assert event.event_type == PaymentEventType.SUBSCRIPTION_DELETED
        assert event.cancel_at_period_end is True
        assert event.ended_at == event.occurred_at
        assert event.amount_cents == 900

    def test_checkout_completed(self):
        event = StripeAdapter.parse_event(
            stripe_event(
                "checkout.session.completed",
                {
                    "id": "cs_1",
                    "subscription": "sub_5",
                    "customer": "cus_5",
                    "amount_total": 800,
                    "metadata": {"subscriber_account_id": "a", "deliverable_id": "g"},
                },
            )
        )

        assert event.event_type == PaymentEventType.CHECKOUT_COMPLETED
        assert event.checkout_session_id == "cs_1"
        assert event.metadata["deliverable_id"] == "g"

    def test_unknown_type_is_unsupported(self):
        event = StripeAdapter.parse_event(stripe_event("customer.created", {"id": "cus_1"}))

        assert event.event_type == PaymentEventType.UNSUPPORTED
        assert event.gateway_subscription_id is None

    def test_missing_envelope_rejected(self):
        with pytest.raises(ValidationError):
            StripeAdapter.parse_event({"type": "invoice.paid"})


class TestVerifyWebhookSignature:
    def test_missing_header(self, adapter):
        with pytest.raises(SignatureError):
            adapter.verify_webhook_signature(b"{}", "")

    @patch("billing.adapters.stripe_adapter.stripe.Webhook.construct_event")
    def test_bad_signature(self, construct_event, adapter):
        construct_event.side_effect = stripe.SignatureVerificationError("bad", "t=1,v1=x")

        with pytest.raises(SignatureError):
            adapter.verify_webhook_signature(b"{}", "t=1,v1=x")

    @patch("billing.adapters.stripe_adapter.stripe.Webhook.construct_event")
    def test_malformed_body(self, construct_event, adapter):
        construct_event.side_effect = ValueError("not json")

        with pytest.raises(ValidationError):
            adapter.verify_webhook_signature(b"nope", "t=1,v1=x")

    @patch("billing.adapters.stripe_adapter.stripe.Webhook.construct_event")
    def test_valid_event_is_parsed(self, construct_event, adapter):
        construct_event.return_value.to_dict.return_value = stripe_event(
            "invoice.payment_failed", {"id": "in_9", "subscription": "sub_9", "amount_due": 100}
        )

        event = adapter.verify_webhook_signature(b"{}", "t=1,v1=x")

        construct_event.assert_called_once_with(b"{}", "t=1,v1=x", "whsec_test")
        assert event.gateway_payment_id == "in_9"


class TestErrorTranslation:
    """Stripe exceptions become transient or permanent gateway errors."""

    @pytest.mark.parametrize(
        ("error", "expected"),
        [
            (stripe.CardError("declined", "number", "card_declined"), PermanentGatewayError),
            (stripe.InvalidRequestError("no such price", "price"), PermanentGatewayError),
            (stripe.AuthenticationError("bad key"), PermanentGatewayError),
            (stripe.RateLimitError("slow down"), TransientGatewayError),
            (stripe.APIConnectionError("timeout"), TransientGatewayError),
            (stripe.APIError("500"), TransientGatewayError),
            (RuntimeError("surprise"), TransientGatewayError),
        ],
    )
    @patch("billing.adapters.stripe_adapter.stripe.Subscription.modify")
    def test_error_mapping(self, modify, adapter, error, expected):
        modify.side_effect = error

        with pytest.raises(expected):
            adapter.cancel_at_period_end("sub_1")

    def test_card_error_code(self, adapter):
        with patch("billing.adapters.stripe_adapter.stripe.Subscription.create") as create:
            create.side_effect = stripe.CardError("declined", "number", "card_declined")

            with pytest.raises(PermanentGatewayError) as exc_info:
                adapter.create_subscription("cus_1", "price_1", {})

        assert exc_info.value.error_code == "CARD_DECLINED"
        assert exc_info.value.gateway_code == "card_declined"
        assert not exc_info.value.is_retryable


class TestGatewayCalls:
    @patch("billing.adapters.stripe_adapter.stripe.Subscription.create")
    def test_create_subscription_passes_idempotency_key(self, create, adapter):
        create.return_value = MagicMock(id="sub_new")

        result = adapter.create_subscription("cus_1", "price_1", {"a": "b"}, idempotency_key="key-1")

        assert result == "sub_new"
        create.assert_called_once_with(
            customer="cus_1",
            items=[{"price": "price_1"}],
            metadata={"a": "b"},
            idempotency_key="key-1",
        )

    @patch("billing.adapters.stripe_adapter.stripe.Balance.retrieve")
    def test_balance_sums_first_currency(self, retrieve, adapter):
        retrieve.return_value.to_dict.return_value = {
            "available": [{"amount": 1000, "currency": "usd"}, {"amount": 50, "currency": "eur"}],
            "pending": [{"amount": 300, "currency": "usd"}],
        }

        balance = adapter.retrieve_account_balance("acct_1")

        retrieve.assert_called_once_with(stripe_account="acct_1")
        assert balance.available_cents == 1000
        assert balance.pending_cents == 300
        assert balance.currency == "usd"


class TestIdempotencyKeyGenerator:
    def test_same_input_same_key(self, settings):
        settings.SECRET_KEY = "test-secret"

        first = IdempotencyKeyGenerator.generate("takeover_checkout", "abc")
        second = IdempotencyKeyGenerator.generate("takeover_checkout", "abc")

        assert first == second
        assert first.startswith("takeover_checkout:abc:1:")

    def test_attempt_changes_key(self):
        assert IdempotencyKeyGenerator.generate("op", "abc", 1) != IdempotencyKeyGenerator.generate(
            "op", "abc", 2
        )
