"""
Data types for ledger operations.

Types:
    Money: Integer amount in the smallest currency unit, tagged with currency
    CommissionSplit: Result of dividing a payment between provider and platform

All amounts are integers. Floats are rejected on construction so no
floating-point value can reach the ledger.

Usage:
    from billing.ledger.types import Money

    gross = Money(cents=800, currency="usd")
    fee = Money(cents=30, currency="usd")
    net = gross - fee            # Money(cents=770, currency='usd')
    str(net)                     # "$7.70 USD"
"""

from __future__ import annotations

from dataclasses import dataclass

from core.exceptions import ValidationError

# Largest value a signed 64-bit BIGINT column can hold
MAX_CENTS = 2**63 - 1


def ensure_cents(name: str, value: object, allow_negative: bool = False) -> int:
    """
    Validate that ``value`` is a usable integer amount of cents.

    Raises:
        ValidationError: Not an int (bool and float included), negative,
            or beyond the 64-bit column range
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{name} must be an integer number of cents",
            error_code="INVALID_AMOUNT",
            details={name: repr(value)},
        )
    if not allow_negative and value < 0:
        raise ValidationError(
            f"{name} must not be negative",
            error_code="NEGATIVE_AMOUNT",
            details={name: value},
        )
    if abs(value) > MAX_CENTS:
        raise ValidationError(
            f"{name} exceeds the supported range",
            error_code="AMOUNT_OVERFLOW",
            details={name: value},
        )
    return value


@dataclass(frozen=True)
class Money:
    """
    Represents a monetary amount.

    Attributes:
        cents: Amount in the smallest currency unit (e.g., cents for USD)
        currency: ISO 4217 currency code, lower case (default: 'usd')
    """

    cents: int
    currency: str = "usd"

    def __post_init__(self) -> None:
        ensure_cents("cents", self.cents, allow_negative=True)
        if not self.currency or len(self.currency) != 3:
            raise ValidationError(
                "currency must be a 3-letter ISO 4217 code",
                error_code="INVALID_CURRENCY",
                details={"currency": self.currency},
            )
        object.__setattr__(self, "currency", self.currency.lower())

    def __str__(self) -> str:
        sign = "-" if self.cents < 0 else ""
        whole, fraction = divmod(abs(self.cents), 100)
        return f"{sign}${whole}.{fraction:02d} {self.currency.upper()}"

    def _check_currency(self, other: Money, verb: str) -> None:
        if self.currency != other.currency:
            raise ValidationError(
                f"Cannot {verb} Money with different currencies: "
                f"{self.currency} and {other.currency}",
                error_code="CURRENCY_MISMATCH",
            )

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "add")
        return Money(cents=self.cents + other.cents, currency=self.currency)

    def __sub__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        self._check_currency(other, "subtract")
        return Money(cents=self.cents - other.cents, currency=self.currency)

    @property
    def is_negative(self) -> bool:
        return self.cents < 0


@dataclass(frozen=True)
class CommissionSplit:
    """
    Division of one payment between provider and platform.

    Invariant: provider_cents + platform_cents == gross_cents - fee_cents.

    Attributes:
        gross_cents: Amount charged to the payer
        fee_cents: Gateway processing fee subtracted before the split
        provider_cents: Provider share (rounded down)
        platform_cents: Platform share (absorbs the rounding remainder)
        rate_bps: Commission rate the split was computed with
    """

    gross_cents: int
    fee_cents: int
    provider_cents: int
    platform_cents: int
    rate_bps: int

    @property
    def net_cents(self) -> int:
        return self.gross_cents - self.fee_cents

    @property
    def balances(self) -> bool:
        return (
            self.provider_cents >= 0
            and self.platform_cents >= 0
            and self.provider_cents + self.platform_cents == self.net_cents
        )
