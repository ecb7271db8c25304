"""
Billing takeover workflow.

A candidate payer (for example a family member of a subscriber who can no
longer pay) takes over the obligation to pay for an account, and for
``full_primary`` takeovers its ownership as well.

Flow:
    1. initiate(): eligibility checks, a PENDING BillingTakeover naming the
       account's current subscription, then a hosted checkout on the gateway
       (no transaction or lock held).
    2. The candidate pays. The gateway reports charge_succeeded with the
       takeover id in the invoice metadata.
    3. complete() runs inside the webhook transaction: PENDING ->
       PAYMENT_CONFIRMED, then in one savepoint the payer pointer moves by
       conditional update, subscriptions regain access, the covered
       subscription is rebound to the candidate's gateway subscription, the
       TakeoverRecord is written and the takeover becomes COMPLETED. The
       previous payer's gateway subscription is cancelled after commit.

From then on the candidate's invoices still carry the takeover id, but the
takeover is COMPLETED with a covered subscription, so they are handled as
ordinary renewals of the rebound subscription.

Only one takeover can win per account. The payer pointer update matches on
the payer observed at initiation; if another candidate got there first it
matches no row, TakeoverConflictError is raised inside the savepoint, the
losing takeover is marked FAILED and, once the webhook commits, the
gateway is told to cancel the loser's new subscription at period end.

Usage:
    from billing.services.takeover import BillingTakeoverService

    service = BillingTakeoverService(ledger=SubscriptionLedger(), gateway=StripeAdapter())
    takeover = service.initiate(
        account_id=target.pk,
        candidate_id=candidate.pk,
        takeover_type=TakeoverType.BILLING_ONLY,
        reason=TakeoverReason.FINANCIAL,
        requested_by=request.user,
    )
    takeover.checkout_url   # where the candidate pays
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from datetime import datetime
from typing import TYPE_CHECKING

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db import transaction
from django.utils import timezone

from accounts.choices import AccountKind, AccountStatus
from accounts.models import Account
from billing.adapters.stripe_adapter import IdempotencyKeyGenerator
from billing.exceptions import GatewayError, TakeoverConflictError
from billing.models import BillingTakeover, Subscription, TakeoverRecord
from billing.services.lifecycle import SubscriptionStateMachine, cancel_replaced_subscription
from billing.state_machines.states import SubscriptionState, TakeoverState, TakeoverType
from core.exceptions import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from core.services import BaseService, ServiceResult

if TYPE_CHECKING:
    from billing.adapters.gateway import PaymentGateway
    from billing.ledger.services import SubscriptionLedger


OPEN_STATES = (TakeoverState.PENDING, TakeoverState.PAYMENT_CONFIRMED)


class BillingTakeoverService(BaseService):
    """
    Initiates and completes billing takeovers.

    ``gateway`` opens checkouts and cancels replaced or orphaned
    subscriptions; ``ledger`` restores access on the account's subscriptions.
    """

    def __init__(
        self,
        ledger: SubscriptionLedger,
        gateway: PaymentGateway,
        clock: Callable[[], datetime] = timezone.now,
    ):
        self.ledger = ledger
        self.gateway = gateway
        self.clock = clock
        self.state_machine = SubscriptionStateMachine(ledger=ledger, gateway=gateway, clock=clock)

    # =========================================================================
    # Initiation
    # =========================================================================

    def initiate(
        self,
        account_id: uuid.UUID,
        candidate_id: uuid.UUID,
        takeover_type: str,
        reason: str,
        requested_by,
        reason_text: str = "",
    ) -> BillingTakeover:
        """
        Start a takeover and open a checkout for the candidate.

        Raises:
            NotFoundError: Account or candidate does not exist
            PermissionDeniedError: Caller does not own the candidate account
            ValidationError: Candidate or account is not eligible
            ConflictError: Candidate already has an open takeover for the account
            TransientGatewayError / PermanentGatewayError: Checkout failed;
                the takeover is marked FAILED
        """
        logger = self.get_logger()
        account = self._get_account(account_id, "account")
        candidate = self._get_account(candidate_id, "candidate")

        if candidate.user_id != requested_by.pk:
            raise PermissionDeniedError(
                "You can only start a takeover with an account you own",
                details={"candidate_id": str(candidate.pk)},
            )
        self._check_eligibility(account, candidate)
        covered = self._covered_subscription(account)

        with transaction.atomic():
            takeover = BillingTakeover.objects.create(
                account=account,
                candidate=candidate,
                subscription=covered,
                expected_previous_payer_id=account.billing_payer_id,
                takeover_type=takeover_type,
                reason=reason,
                reason_text=reason_text,
            )

        log_context = {
            "takeover_id": str(takeover.pk),
            "account_id": str(account.pk),
            "candidate_id": str(candidate.pk),
            "takeover_type": takeover_type,
        }
        logger.info("Takeover initiated", extra=log_context)

        try:
            session = self.gateway.create_checkout_session(
                customer_id=candidate.gateway_customer_id or None,
                price_id=self._price_for(covered),
                metadata=self._checkout_metadata(takeover, covered),
                idempotency_key=IdempotencyKeyGenerator.generate("takeover_checkout", takeover.pk),
            )
        except GatewayError as e:
            takeover.fail(reason=f"checkout failed: {e.message}")
            takeover.save()
            logger.warning(
                "Takeover checkout failed",
                extra={**log_context, "error_code": e.error_code},
            )
            raise

        takeover.checkout_session_id = session.id
        takeover.checkout_url = session.url
        takeover.save(update_fields=["checkout_session_id", "checkout_url", "updated_at"])
        return takeover

    def _check_eligibility(self, account: Account, candidate: Account) -> None:
        problems = []
        if candidate.pk == account.pk:
            problems.append("An account cannot take over its own billing")
        if candidate.kind != AccountKind.SUBSCRIBER or candidate.status != AccountStatus.ACTIVE:
            problems.append("The candidate must be an active subscriber account")
        if account.billing_payer_id == candidate.pk:
            problems.append("The candidate already pays for this account")
        if account.status == AccountStatus.DEACTIVATED:
            problems.append("The account has been deactivated")
        if problems:
            raise ValidationError(
                problems[0],
                error_code="TAKEOVER_NOT_ELIGIBLE",
                details={"reasons": problems},
            )

        if BillingTakeover.objects.filter(
            account=account,
            candidate=candidate,
            state__in=OPEN_STATES,
        ).exists():
            raise ConflictError(
                "A takeover by this candidate is already in progress",
                error_code="TAKEOVER_IN_PROGRESS",
                details={"account_id": str(account.pk), "candidate_id": str(candidate.pk)},
            )

    @staticmethod
    def _covered_subscription(account: Account) -> Subscription | None:
        """The account's most recent live subscription, which the candidate will pay for."""
        return Subscription.objects.filter(subscriber=account).live().order_by("-created_at").first()

    @staticmethod
    def _price_for(subscription: Subscription | None) -> str:
        if subscription is not None and subscription.gateway_price_id:
            return subscription.gateway_price_id
        return settings.STRIPE_SUBSCRIBER_PRICE_ID

    @staticmethod
    def _checkout_metadata(takeover: BillingTakeover, subscription: Subscription | None) -> dict:
        metadata = {
            "takeover_id": str(takeover.pk),
            "account_id": str(takeover.account_id),
            "candidate_account_id": str(takeover.candidate_id),
        }
        if subscription is not None:
            metadata["subscription_id"] = str(subscription.pk)
        return metadata

    @staticmethod
    def _get_account(account_id, role: str) -> Account:
        try:
            return Account.objects.get(pk=account_id)
        except (Account.DoesNotExist, ValueError, DjangoValidationError):
            raise NotFoundError(
                f"{role.capitalize()} not found",
                details={f"{role}_id": str(account_id)},
            )

    # =========================================================================
    # Completion
    # =========================================================================

    @staticmethod
    def bills_subscription(takeover_id) -> bool:
        """Whether events carrying this takeover id are renewals of a rebound subscription."""
        try:
            return BillingTakeover.objects.filter(
                pk=takeover_id,
                state=TakeoverState.COMPLETED,
                subscription__isnull=False,
            ).exists()
        except (ValueError, DjangoValidationError):
            return False

    def record_checkout(self, takeover_id, gateway_subscription_id: str | None) -> None:
        """Remember the subscription a completed takeover checkout created."""
        if not gateway_subscription_id:
            return
        try:
            uuid.UUID(str(takeover_id))
        except ValueError:
            return
        BillingTakeover.objects.filter(
            pk=takeover_id,
            gateway_subscription_id="",
        ).update(gateway_subscription_id=gateway_subscription_id, updated_at=timezone.now())

    def complete(
        self,
        takeover_id,
        gateway_subscription_id: str | None = None,
    ) -> ServiceResult[dict]:
        """
        Complete a takeover after its payment succeeded.

        Must run inside a transaction (the webhook's). Replays of an already
        completed takeover are no-ops.

        Returns:
            ServiceResult with the takeover id, its state and the covered
            subscription id; failure with TAKEOVER_ALREADY_CLAIMED when
            another candidate won the account
        """
        logger = self.get_logger()
        try:
            takeover = BillingTakeover.objects.select_for_update().filter(pk=takeover_id).first()
        except DjangoValidationError:
            takeover = None
        if takeover is None:
            logger.warning("Payment for unknown takeover", extra={"takeover_id": str(takeover_id)})
            return ServiceResult.failure("Unknown takeover", "TAKEOVER_NOT_FOUND")

        log_context = {"takeover_id": str(takeover.pk), "account_id": str(takeover.account_id)}

        if takeover.state == TakeoverState.COMPLETED:
            logger.info("Takeover already completed", extra=log_context)
            return ServiceResult.success(self._result_data(takeover))
        if takeover.state == TakeoverState.FAILED:
            logger.info("Payment for failed takeover ignored", extra=log_context)
            return ServiceResult.failure("Takeover already failed", "TAKEOVER_FAILED")

        if takeover.state == TakeoverState.PENDING:
            takeover.confirm_payment(gateway_subscription_id or "")
            takeover.save()

        try:
            with transaction.atomic():
                self.claim(takeover)
        except TakeoverConflictError as e:
            takeover.fail(reason=e.message)
            takeover.save()
            logger.warning("Takeover lost the race for the account", extra=log_context)

            orphan = takeover.gateway_subscription_id
            if orphan:
                transaction.on_commit(lambda: self.cancel_orphaned_subscription(takeover.pk, orphan))
            return ServiceResult.failure(e.message, e.error_code)

        logger.info("Takeover completed", extra=log_context)
        return ServiceResult.success(self._result_data(takeover))

    @staticmethod
    def _result_data(takeover: BillingTakeover) -> dict:
        return {
            "takeover_id": str(takeover.pk),
            "state": takeover.state,
            "subscription_id": str(takeover.subscription_id) if takeover.subscription_id else None,
        }

    def claim(self, takeover: BillingTakeover) -> TakeoverRecord:
        """
        Move the payer pointer, rebind the covered subscription and write
        the audit record.

        The takeover must be PAYMENT_CONFIRMED. Run inside a savepoint so a
        conflict leaves nothing behind.

        Raises:
            TakeoverConflictError: The payer pointer no longer matches the
                one observed when the takeover started
        """
        now = self.clock()
        account = Account.objects.get(pk=takeover.account_id)

        queryset = Account.objects.filter(pk=takeover.account_id)
        if takeover.expected_previous_payer_id is None:
            queryset = queryset.filter(billing_payer__isnull=True)
        else:
            queryset = queryset.filter(billing_payer_id=takeover.expected_previous_payer_id)

        claimed = queryset.update(
            billing_payer_id=takeover.candidate_id,
            billing_payer_since=now,
            updated_at=now,
        )
        if claimed != 1:
            raise TakeoverConflictError(
                "This account has already been claimed by another payer",
                details={
                    "takeover_id": str(takeover.pk),
                    "account_id": str(takeover.account_id),
                },
            )

        self.ledger.restore_access_for_account(takeover.account_id)
        self._rebind_covered_subscription(takeover)

        previous_owner_id = account.user_id
        if takeover.takeover_type == TakeoverType.FULL_PRIMARY:
            candidate_owner_id = Account.objects.values_list("user_id", flat=True).get(
                pk=takeover.candidate_id
            )
            Account.objects.filter(pk=account.pk).update(
                user_id=candidate_owner_id,
                original_owner_id=account.original_owner_id or previous_owner_id,
                updated_at=now,
            )

        record = TakeoverRecord.objects.create(
            takeover=takeover,
            account_id=takeover.account_id,
            previous_payer_id=takeover.expected_previous_payer_id,
            new_payer_id=takeover.candidate_id,
            previous_owner_id=previous_owner_id,
            takeover_type=takeover.takeover_type,
            reason=takeover.reason,
            reason_text=takeover.reason_text,
            gateway_subscription_id=takeover.gateway_subscription_id,
            completed_at=now,
        )

        takeover.complete()
        takeover.save()
        return record

    def _rebind_covered_subscription(self, takeover: BillingTakeover) -> None:
        """Bill the covered subscription through the candidate's gateway subscription."""
        if not (takeover.subscription_id and takeover.gateway_subscription_id):
            return
        subscription = self.ledger.get(takeover.subscription_id, for_update=True)
        if subscription.state == SubscriptionState.CANCELLED:
            return
        self.state_machine.replace_gateway_subscription(subscription, takeover.gateway_subscription_id)

    def cancel_orphaned_subscription(self, takeover_id, gateway_subscription_id: str) -> None:
        """
        Stop the losing candidate's new subscription from renewing.

        Runs after commit; a gateway failure is logged for follow-up since
        the webhook has already been acknowledged.
        """
        cancel_replaced_subscription(
            self.gateway,
            gateway_subscription_id,
            {"takeover_id": str(takeover_id)},
        )
