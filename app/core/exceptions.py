"""
Base exception classes for application-wide error handling.

Every domain error raised by the service layer derives from
BaseApplicationError so views can turn it into a uniform JSON body with
``to_dict()`` and a status code chosen by the exception class.

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Malformed input, rejected before any mutation
    ├── NotFoundError - Resource not found
    ├── PermissionDeniedError - Caller may not act on the resource
    ├── ConflictError - Optimistic-concurrency precondition failed
    └── ExternalServiceError - Third-party service failures

Usage:
    from core.exceptions import ValidationError, ConflictError

    raise ValidationError(
        "gross_cents must not be negative",
        error_code="NEGATIVE_AMOUNT",
        details={"gross_cents": -5},
    )

    try:
        ...
    except BaseApplicationError as e:
        return Response(e.to_dict(), status=e.http_status)

Note:
    DRF still handles its own API-layer exceptions (serializer errors,
    authentication). These classes are for service-layer failures.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (ids, amounts, states)
        http_status: Status code views use when surfacing the error
    """

    default_error_code: str = "APPLICATION_ERROR"
    http_status: int = 400

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Example:
            {
                "error": "Account already has a billing payer",
                "error_code": "TAKEOVER_ALREADY_CLAIMED",
                "details": {"account_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for malformed amounts, out-of-range rates, unknown takeover types and
    webhook payloads missing required fields. Raised before any state is
    touched.
    """

    default_error_code: str = "VALIDATION_ERROR"
    http_status: int = 400


class NotFoundError(BaseApplicationError):
    """Raised when a requested resource is not found."""

    default_error_code: str = "NOT_FOUND"
    http_status: int = 404


class PermissionDeniedError(BaseApplicationError):
    """
    Raised when the caller lacks permission for an operation.

    For missing or invalid credentials use DRF's AuthenticationFailed;
    this class is for authorization failures on an identified caller.
    """

    default_error_code: str = "PERMISSION_DENIED"
    http_status: int = 403


class ConflictError(BaseApplicationError):
    """
    Raised when an operation conflicts with current resource state.

    Use for:
    - Conditional updates that matched zero rows
    - Version mismatches on optimistic locking
    - User actions that are not legal in the current lifecycle state

    Example:
        updated = Account.objects.filter(
            pk=account.pk, billing_payer__isnull=True
        ).update(billing_payer=candidate)
        if updated == 0:
            raise ConflictError("Account already claimed")
    """

    default_error_code: str = "CONFLICT"
    http_status: int = 409


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service call fails.

    Log the original error for debugging but never expose gateway
    internals to end users.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
    http_status: int = 502
