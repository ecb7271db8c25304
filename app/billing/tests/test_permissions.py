"""
Tests for HasJobTriggerToken.
"""

from unittest.mock import Mock

import pytest
from rest_framework.exceptions import NotAuthenticated
from rest_framework.test import APIRequestFactory

from billing.permissions import HasJobTriggerToken


@pytest.fixture
def check():
    factory = APIRequestFactory()

    def _check(header=None):
        extra = {"HTTP_AUTHORIZATION": header} if header is not None else {}
        request = factory.post("/api/v1/jobs/grace-period-sweep", **extra)
        return HasJobTriggerToken().has_permission(request, Mock())

    return _check


class TestHasJobTriggerToken:
    def test_correct_token(self, check, settings):
        settings.JOB_TRIGGER_SECRET = "s3cret"

        assert check("Bearer s3cret") is True

    def test_wrong_token(self, check, settings):
        settings.JOB_TRIGGER_SECRET = "s3cret"

        assert check("Bearer guess") is False

    @pytest.mark.parametrize("header", [None, "", "Basic s3cret", "s3cret"])
    def test_missing_bearer_is_unauthenticated(self, check, settings, header):
        settings.JOB_TRIGGER_SECRET = "s3cret"

        with pytest.raises(NotAuthenticated):
            check(header)

    def test_unset_secret_rejects_everything(self, check, settings):
        settings.JOB_TRIGGER_SECRET = ""

        assert check("Bearer ") is False
        assert check("Bearer anything") is False
