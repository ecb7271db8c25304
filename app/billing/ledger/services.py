"""
Subscription ledger: persistence for subscriptions, commissions and the
account-status columns the billing core owns.

SubscriptionLedger is the store the state machine, the takeover workflow
and the compliance jobs are given. Every write is a conditional UPDATE
whose WHERE clause restates what the caller read (version and state for
subscriptions, status for accounts), so concurrent writers never silently
overwrite each other:

    UPDATE subscriptions
       SET state = 'active', version = version + 1, ...
     WHERE id = %s AND version = %s AND state = %s

Zero matched rows raise StaleRecordError for subscriptions; account status
updates report whether they changed anything so the jobs can count.

Usage:
    from billing.ledger import SubscriptionLedger

    ledger = SubscriptionLedger()
    subscription = ledger.get_by_gateway_id("sub_123", for_update=True)
    ledger.commit(subscription, expected_state, expected_version, changes)
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Any

from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from accounts.choices import AccountKind, AccountStatus
from accounts.models import Account
from billing.exceptions import InvariantViolation, StaleRecordError
from billing.ledger.commission import calculate_commission_split
from billing.models import CommissionRecord, PaymentEvent, Subscription
from billing.state_machines.states import CommissionStatus, SubscriptionState
from core.exceptions import ConflictError, NotFoundError

if TYPE_CHECKING:
    from collections.abc import Iterable

logger = logging.getLogger(__name__)


class SubscriptionLedger:
    """
    Store for ledger rows.

    Holds no state of its own; one instance can be shared.
    """

    # =========================================================================
    # Subscription reads
    # =========================================================================

    @staticmethod
    def get(subscription_id: uuid.UUID | str, for_update: bool = False) -> Subscription:
        """
        Load a subscription by primary key.

        Raises:
            NotFoundError: No such subscription
        """
        queryset = Subscription.objects.select_related("subscriber", "provider")
        if for_update:
            queryset = queryset.select_for_update(of=("self",))
        try:
            return queryset.get(pk=subscription_id)
        except (Subscription.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFoundError(
                "Subscription not found",
                details={"subscription_id": str(subscription_id)},
            )

    @staticmethod
    def get_by_gateway_id(
        gateway_subscription_id: str,
        for_update: bool = False,
    ) -> Subscription | None:
        queryset = Subscription.objects.select_related("subscriber", "provider")
        if for_update:
            queryset = queryset.select_for_update(of=("self",))
        return queryset.filter(gateway_subscription_id=gateway_subscription_id).first()

    # =========================================================================
    # Subscription writes
    # =========================================================================

    @staticmethod
    def create_subscription(
        subscriber: Account,
        deliverable_id: str,
        gateway_subscription_id: str,
        provider: Account | None = None,
        gateway_price_id: str = "",
        amount_cents: int = 0,
        currency: str = "usd",
        current_period_end: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Subscription:
        """
        Create a trialing subscription, snapshotting the provider's rate.

        Raises:
            ConflictError: The subscriber already holds a live subscription
                for this deliverable
        """
        try:
            with transaction.atomic():
                subscription = Subscription.objects.create(
                    subscriber=subscriber,
                    provider=provider,
                    deliverable_id=deliverable_id,
                    gateway_subscription_id=gateway_subscription_id,
                    gateway_price_id=gateway_price_id,
                    commission_rate_bps=provider.commission_rate_bps if provider else 0,
                    amount_cents=amount_cents,
                    currency=currency,
                    current_period_end=current_period_end,
                    metadata=metadata or {},
                )
        except IntegrityError:
            raise ConflictError(
                "A live subscription already exists for this deliverable",
                error_code="SUBSCRIPTION_EXISTS",
                details={
                    "subscriber_id": str(subscriber.pk),
                    "deliverable_id": deliverable_id,
                    "gateway_subscription_id": gateway_subscription_id,
                },
            )

        logger.info(
            "Subscription created",
            extra={
                "subscription_id": str(subscription.pk),
                "subscriber_id": str(subscriber.pk),
                "provider_id": str(provider.pk) if provider else None,
                "commission_rate_bps": subscription.commission_rate_bps,
            },
        )
        return subscription

    @staticmethod
    def commit(
        subscription: Subscription,
        expected_state: str,
        expected_version: int,
        changes: dict[str, Any],
    ) -> Subscription:
        """
        Persist ``changes`` if the row still has the state and version read.

        ``subscription.state`` must already hold the target state (set by the
        model's FSM method); it is written together with ``changes``.

        Returns:
            A freshly loaded Subscription

        Raises:
            StaleRecordError: Another writer changed the row first
        """
        updated = Subscription.objects.filter(
            pk=subscription.pk,
            version=expected_version,
            state=expected_state,
        ).update(
            **changes,
            state=subscription.state,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
        if updated != 1:
            raise StaleRecordError(
                "Subscription was modified concurrently",
                details={
                    "subscription_id": str(subscription.pk),
                    "expected_state": str(expected_state),
                    "expected_version": expected_version,
                },
            )
        return SubscriptionLedger.get(subscription.pk)

    @staticmethod
    def rebind_columns(gateway_subscription_id: str) -> dict[str, Any]:
        """Columns that point a row at a fresh gateway subscription."""
        return {
            "gateway_subscription_id": gateway_subscription_id,
            "gateway_ended_at": None,
            "cancel_at_period_end": False,
        }

    @classmethod
    def rebind_gateway_subscription(
        cls,
        subscription: Subscription,
        gateway_subscription_id: str,
    ) -> Subscription:
        """
        Point a subscription at a new gateway subscription, keeping its state.

        Used when someone starts paying for an existing entitlement through a
        new checkout. Events for the previous gateway subscription no longer
        resolve to this row afterwards.

        Raises:
            StaleRecordError: Another writer changed the row first
        """
        updated = cls.commit(
            subscription,
            subscription.state,
            subscription.version,
            cls.rebind_columns(gateway_subscription_id),
        )
        logger.info(
            "Subscription rebound to new gateway subscription",
            extra={
                "subscription_id": str(subscription.pk),
                "previous_gateway_subscription_id": subscription.gateway_subscription_id,
                "gateway_subscription_id": gateway_subscription_id,
            },
        )
        return updated

    @staticmethod
    def get_live_for_deliverable(
        subscriber_id: uuid.UUID,
        deliverable_id: str,
        for_update: bool = False,
    ) -> Subscription | None:
        queryset = Subscription.objects.select_related("subscriber", "provider")
        if for_update:
            queryset = queryset.select_for_update(of=("self",))
        return queryset.filter(subscriber_id=subscriber_id, deliverable_id=deliverable_id).live().first()

    # =========================================================================
    # Commission
    # =========================================================================

    @staticmethod
    def has_commission_for_payment(gateway_payment_id: str | None) -> bool:
        """Whether a commission was already posted for this invoice."""
        if not gateway_payment_id:
            return False
        return CommissionRecord.objects.filter(gateway_payment_id=gateway_payment_id).exists()

    @staticmethod
    def post_commission(
        subscription: Subscription,
        payment_event: PaymentEvent,
        gross_cents: int,
        fee_cents: int = 0,
        currency: str = "usd",
    ) -> CommissionRecord:
        """
        Write the commission split for one payment.

        Uses the subscription's rate snapshot. A provider whose account is
        suspended gets a WITHHELD record.

        Raises:
            ValidationError: Amounts the calculator rejects
            InvariantViolation: The split does not balance
            ConflictError: Another record already covers this invoice
        """
        provider = subscription.provider
        if provider is not None:
            provider = Account.objects.get(pk=provider.pk)

        split = calculate_commission_split(
            gross_cents=gross_cents,
            rate_bps=subscription.commission_rate_bps,
            fee_cents=fee_cents,
            has_provider=provider is not None,
        )
        if not split.balances:
            raise InvariantViolation(
                "Commission split does not sum to net amount",
                details={
                    "subscription_id": str(subscription.pk),
                    "gross_cents": gross_cents,
                    "fee_cents": fee_cents,
                    "provider_cents": split.provider_cents,
                    "platform_cents": split.platform_cents,
                },
            )

        status = CommissionStatus.POSTED
        if provider is not None and provider.is_suspended:
            status = CommissionStatus.WITHHELD

        try:
            with transaction.atomic():
                record = CommissionRecord.objects.create(
                    payment_event=payment_event,
                    subscription=subscription,
                    provider=provider,
                    gateway_payment_id=payment_event.gateway_payment_id,
                    gross_cents=split.gross_cents,
                    fee_cents=split.fee_cents,
                    provider_cents=split.provider_cents,
                    platform_cents=split.platform_cents,
                    currency=currency,
                    commission_rate_bps=subscription.commission_rate_bps,
                    status=status,
                )
        except IntegrityError:
            raise ConflictError(
                "A commission was already posted for this payment",
                error_code="COMMISSION_EXISTS",
                details={
                    "subscription_id": str(subscription.pk),
                    "gateway_payment_id": payment_event.gateway_payment_id,
                },
            )

        logger.info(
            "Commission posted",
            extra={
                "commission_id": str(record.pk),
                "subscription_id": str(subscription.pk),
                "gateway_event_id": payment_event.gateway_event_id,
                "provider_cents": record.provider_cents,
                "platform_cents": record.platform_cents,
                "status": status,
            },
        )
        return record

    # =========================================================================
    # Account status
    # =========================================================================

    @staticmethod
    def mark_payer_overdue(account_id: uuid.UUID, since: datetime) -> bool:
        """Record the first unresolved charge failure; later ones keep it."""
        return bool(
            Account.objects.filter(pk=account_id, payment_overdue_since__isnull=True).update(
                payment_overdue_since=since,
                updated_at=timezone.now(),
            )
        )

    @staticmethod
    def restore_payer_account(account_id: uuid.UUID) -> bool:
        """
        Clear the overdue marker and lift a suspension after a good charge.

        Deactivated accounts are left alone.

        Returns:
            True if a suspension was lifted
        """
        now = timezone.now()
        Account.objects.filter(pk=account_id, payment_overdue_since__isnull=False).update(
            payment_overdue_since=None,
            updated_at=now,
        )
        restored = Account.objects.filter(pk=account_id, status=AccountStatus.SUSPENDED).update(
            status=AccountStatus.ACTIVE,
            suspended_at=None,
            updated_at=now,
        )
        if restored:
            logger.info("Account suspension lifted", extra={"account_id": str(account_id)})
        return bool(restored)

    @staticmethod
    def suspend_provider(account_id: uuid.UUID, now: datetime) -> bool:
        """ACTIVE -> SUSPENDED for a provider; False if it was not active."""
        return bool(
            Account.objects.filter(
                pk=account_id,
                kind=AccountKind.PROVIDER,
                status=AccountStatus.ACTIVE,
            ).update(
                status=AccountStatus.SUSPENDED,
                suspended_at=now,
                updated_at=now,
            )
        )

    @staticmethod
    def deactivate_subscriber(account_id: uuid.UUID, now: datetime) -> bool:
        """ACTIVE -> DEACTIVATED for a subscriber; False if it was not active."""
        return bool(
            Account.objects.filter(
                pk=account_id,
                kind=AccountKind.SUBSCRIBER,
                status=AccountStatus.ACTIVE,
            ).update(
                status=AccountStatus.DEACTIVATED,
                deactivated_at=now,
                updated_at=now,
            )
        )

    @staticmethod
    def has_entitled_subscription(account_id: uuid.UUID) -> bool:
        return Subscription.objects.filter(
            subscriber_id=account_id,
            access_suspended=False,
        ).entitled().exists()

    @staticmethod
    def restore_access_for_account(
        account_id: uuid.UUID,
        exclude_states: Iterable[str] = (SubscriptionState.CANCELLED,),
    ) -> int:
        """
        Clear access suspension and failure counters on an account's subscriptions.

        Used when a new payer takes over; state is left to the state machine.
        """
        return Subscription.objects.filter(subscriber_id=account_id).exclude(
            state__in=list(exclude_states)
        ).update(
            access_suspended=False,
            access_suspended_at=None,
            payment_failure_count=0,
            last_payment_failure_at=None,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )
