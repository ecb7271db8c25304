"""
Account billing standing, as shown to the account holder.

Subscribers see one entitlement per subscription (active, grace or
suspended) and nothing of the gateway's own states. Providers additionally
see whether they are overdue or suspended, how many days remain before the
suspension sweep picks them up, and their connected-account balance.

Balance lookups are cached for ACCOUNT_BALANCE_CACHE_SECONDS. A gateway
failure degrades the balance to None instead of failing the request.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any

from django.conf import settings
from django.core.cache import cache
from django.utils import timezone

from billing.exceptions import GatewayError
from billing.models import Subscription
from core.services import BaseService

if TYPE_CHECKING:
    from accounts.models import Account
    from billing.adapters.gateway import PaymentGateway

BALANCE_CACHE_KEY = "billing:balance:{connected_account_id}"


class AccountStandingService(BaseService):
    """Builds the billing-status payload for one account."""

    def __init__(
        self,
        gateway: PaymentGateway,
        clock: Callable[[], datetime] = timezone.now,
        suspension_threshold_days: int | None = None,
    ):
        self.gateway = gateway
        self.clock = clock
        self.suspension_threshold_days = (
            suspension_threshold_days
            if suspension_threshold_days is not None
            else settings.PROVIDER_SUSPENSION_THRESHOLD_DAYS
        )

    def billing_status(self, account: Account) -> dict[str, Any]:
        status: dict[str, Any] = {
            "account_id": str(account.pk),
            "kind": account.kind,
            "status": account.status,
            "subscriptions": self._subscriptions(account),
        }
        if account.is_provider:
            status["provider"] = self._provider_standing(account)
        return status

    def _subscriptions(self, account: Account) -> list[Subscription]:
        return list(Subscription.objects.filter(subscriber=account).live().order_by("created_at"))

    def _provider_standing(self, account: Account) -> dict[str, Any]:
        now = self.clock()
        overdue_since = account.payment_overdue_since
        days_overdue = max((now - overdue_since).days, 0) if overdue_since else 0

        days_until_suspension = None
        if overdue_since and not account.is_suspended:
            days_until_suspension = max(self.suspension_threshold_days - days_overdue, 0)

        return {
            "overdue": overdue_since is not None,
            "suspended": account.is_suspended,
            "overdue_since": overdue_since,
            "days_overdue": days_overdue,
            "days_until_suspension": days_until_suspension,
            "suspension_threshold_days": self.suspension_threshold_days,
            "balance": self.cached_balance(account.gateway_connected_account_id),
        }

    def cached_balance(self, connected_account_id: str) -> dict[str, Any] | None:
        if not connected_account_id:
            return None

        key = BALANCE_CACHE_KEY.format(connected_account_id=connected_account_id)
        balance = cache.get(key)
        if balance is not None:
            return balance

        try:
            balance = self.gateway.retrieve_account_balance(connected_account_id).to_dict()
        except GatewayError as e:
            self.get_logger().warning(
                "Balance lookup failed",
                extra={"connected_account_id": connected_account_id, "error_code": e.error_code},
            )
            return None

        cache.set(key, balance, timeout=settings.ACCOUNT_BALANCE_CACHE_SECONDS)
        return balance
