"""
Permission classes for billing API.

- HasJobTriggerToken: shared-secret bearer token for the compliance job
  triggers, compared in constant time.

Job triggers come from a scheduler, not a user, so they authenticate with
``Authorization: Bearer <JOB_TRIGGER_SECRET>`` instead of a JWT. A missing
header is 401; a wrong token is 403. An unset secret rejects everything.
"""

from __future__ import annotations

import hmac
from typing import TYPE_CHECKING

from django.conf import settings
from rest_framework import exceptions, permissions

if TYPE_CHECKING:
    from rest_framework.request import Request
    from rest_framework.views import APIView


BEARER_PREFIX = "Bearer "


class HasJobTriggerToken(permissions.BasePermission):
    """Allows access only with the configured job trigger secret."""

    message = "Invalid job trigger token."

    def has_permission(self, request: Request, view: APIView) -> bool:
        header = request.META.get("HTTP_AUTHORIZATION", "")
        if not header.startswith(BEARER_PREFIX):
            raise exceptions.NotAuthenticated("Job trigger token required.")

        expected = settings.JOB_TRIGGER_SECRET
        if not expected:
            return False

        token = header[len(BEARER_PREFIX):].strip()
        return hmac.compare_digest(token.encode(), expected.encode())
