"""
Tests for account models and querysets.
"""

from datetime import timedelta

import pytest
from django.db import IntegrityError
from django.utils import timezone

from accounts.choices import AccountKind, AccountStatus
from accounts.models import Account, User
from accounts.tests.factories import (
    ProviderAccountFactory,
    SubscriberAccountFactory,
    UserFactory,
)


@pytest.mark.django_db
class TestUserManager:
    """Tests for UserManager."""

    def test_create_user_normalizes_email(self):
        """Domain part of the email is lowercased."""
        user = User.objects.create_user(email="Someone@EXAMPLE.com", password="pw12345!")

        assert user.email == "Someone@example.com"
        assert user.check_password("pw12345!")
        assert not user.is_staff

    def test_create_user_requires_email(self):
        """An empty email is rejected."""
        with pytest.raises(ValueError):
            User.objects.create_user(email="", password="pw")

    def test_create_superuser_sets_flags(self):
        """Superusers are staff and superuser."""
        admin = User.objects.create_superuser(email="admin@example.com", password="pw12345!")

        assert admin.is_staff
        assert admin.is_superuser


@pytest.mark.django_db
class TestAccount:
    """Tests for the Account model."""

    def test_defaults(self, settings):
        """New accounts are active and take the default provider rate."""
        settings.DEFAULT_PROVIDER_COMMISSION_BPS = 4200
        account = Account.objects.create(user=UserFactory(), kind=AccountKind.PROVIDER)

        assert account.status == AccountStatus.ACTIVE
        assert account.commission_rate_bps == 4200
        assert account.billing_payer is None
        assert account.payment_overdue_since is None

    def test_rate_above_full_share_rejected(self):
        """The database refuses a commission rate above 10000 bps."""
        with pytest.raises(IntegrityError):
            ProviderAccountFactory(commission_rate_bps=10_001)

    def test_paying_account_defaults_to_self(self):
        """Without a takeover the account pays for itself."""
        account = SubscriberAccountFactory()

        assert account.paying_account == account

    def test_paying_account_follows_billing_payer(self):
        """After a takeover the payer's account is charged."""
        payer = SubscriberAccountFactory()
        account = SubscriberAccountFactory(billing_payer=payer)

        assert account.paying_account == payer

    def test_is_managed_by_owner_and_payer(self):
        """Owner and payer's owner may manage the account; others may not."""
        payer = SubscriberAccountFactory()
        account = SubscriberAccountFactory(billing_payer=payer)

        assert account.is_managed_by(account.user)
        assert account.is_managed_by(payer.user)
        assert not account.is_managed_by(UserFactory())

    def test_status_properties(self):
        """Status helpers reflect the status column."""
        provider = ProviderAccountFactory(status=AccountStatus.SUSPENDED)
        subscriber = SubscriberAccountFactory(status=AccountStatus.DEACTIVATED)

        assert provider.is_provider
        assert provider.is_suspended
        assert not subscriber.is_provider
        assert subscriber.is_deactivated


@pytest.mark.django_db
class TestAccountQuerySet:
    """Tests for AccountQuerySet selections."""

    def test_kind_and_status_filters(self):
        """providers(), subscribers() and active() narrow by column."""
        provider = ProviderAccountFactory()
        ProviderAccountFactory(status=AccountStatus.SUSPENDED)
        subscriber = SubscriberAccountFactory()

        assert list(Account.objects.providers().active()) == [provider]
        assert list(Account.objects.subscribers()) == [subscriber]

    def test_overdue_for_uses_inclusive_threshold(self):
        """Accounts overdue exactly the threshold are included."""
        now = timezone.now()
        exactly = ProviderAccountFactory(payment_overdue_since=now - timedelta(days=90))
        ProviderAccountFactory(payment_overdue_since=now - timedelta(days=89))
        ProviderAccountFactory(payment_overdue_since=None)

        assert list(Account.objects.overdue_for(90, now)) == [exactly]
