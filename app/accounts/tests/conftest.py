"""
Pytest fixtures for account tests.
"""

import pytest

from accounts.tests.factories import (
    ProviderAccountFactory,
    SubscriberAccountFactory,
    UserFactory,
)


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def subscriber_account(db, user):
    """Active subscriber account owned by ``user``."""
    return SubscriberAccountFactory(user=user)


@pytest.fixture
def provider_account(db):
    """Active provider account with a 50% commission rate."""
    return ProviderAccountFactory()
