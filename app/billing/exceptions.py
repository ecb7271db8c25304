"""
Billing-specific exceptions.

Exception Hierarchy:
    SignatureError - Webhook payload failed signature verification
    InvariantViolation - Should-never-happen ledger state (fatal)
    └── UnmatchedPaymentError - Successful charge with no ledger row
    GatewayError (ExternalServiceError) - Base for all gateway failures
    ├── TransientGatewayError - Timeout, rate limit, 5xx (retryable)
    └── PermanentGatewayError - Card/invalid request/auth (not retryable)
    StaleRecordError (ConflictError) - Optimistic version check lost
    InvalidStateTransitionError (ConflictError) - Action not legal in state
    TakeoverConflictError (ConflictError) - Account already claimed

Propagation:
    ValidationError and SignatureError are handled at the request boundary
    and never reach the state machine. ConflictError is surfaced to callers.
    TransientGatewayError becomes a non-2xx so the gateway (or the job
    trigger) retries. InvariantViolation aborts the transaction and is
    logged at error severity; the webhook is left unprocessed.

Usage:
    from billing.exceptions import InvariantViolation

    if split.provider_cents + split.platform_cents != net:
        raise InvariantViolation(
            "Commission split does not sum to net amount",
            details={"gross_cents": gross, "provider_cents": split.provider_cents},
        )
"""

from __future__ import annotations

from core.exceptions import BaseApplicationError, ConflictError, ExternalServiceError


class SignatureError(BaseApplicationError):
    """Raised when a webhook signature is missing or does not verify."""

    default_error_code: str = "INVALID_SIGNATURE"
    http_status: int = 400


class InvariantViolation(BaseApplicationError):
    """
    Raised when the ledger would enter a state that must never exist.

    Examples: a commission split that does not sum to the net amount, an
    attempt to rewrite an append-only payment event, or the transition table
    and the model's FSM disagreeing about a legal edge.
    """

    default_error_code: str = "INVARIANT_VIOLATION"
    http_status: int = 500


# =============================================================================
# Gateway Errors
# =============================================================================


class GatewayError(ExternalServiceError):
    """
    Base exception for payment gateway failures.

    Attributes:
        gateway_code: Code reported by the gateway, when there is one
        is_retryable: Whether repeating the call may succeed
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        gateway_code: str | None = None,
        error_code: str | None = None,
        details: dict | None = None,
    ):
        super().__init__(message, error_code=error_code, details=details)
        self.gateway_code = gateway_code


class TransientGatewayError(GatewayError):
    """
    Network error, timeout, rate limit or gateway-side 5xx.

    Callers answer with 503 so the gateway or the cron trigger retries;
    webhook retries are safe because of the idempotency guard.
    """

    default_error_code: str = "GATEWAY_UNAVAILABLE"
    http_status: int = 503
    is_retryable: bool = True


class PermanentGatewayError(GatewayError):
    """Card declined, invalid request or bad credentials. Retrying won't help."""

    default_error_code: str = "GATEWAY_REJECTED"
    http_status: int = 502
    is_retryable: bool = False


# =============================================================================
# Concurrency Errors
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when a conditional update matched no rows.

    The row was changed by another process between read and write (version
    or status precondition no longer holds).
    """

    default_error_code: str = "STALE_RECORD"


class InvalidStateTransitionError(ConflictError):
    """Raised when a user action is not legal in the subscription's state."""

    default_error_code: str = "INVALID_STATE_TRANSITION"


class TakeoverConflictError(ConflictError):
    """Raised when another candidate already completed a takeover."""

    default_error_code: str = "TAKEOVER_ALREADY_CLAIMED"


class UnmatchedPaymentError(InvariantViolation):
    """
    Raised when a successful charge cannot be tied to any ledger row.

    The money moved, so acknowledging the event would lose it. The webhook
    is left unprocessed for the gateway to retry while someone investigates.
    """

    default_error_code: str = "UNMATCHED_PAYMENT"
