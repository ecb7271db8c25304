"""
Commission split calculator.

Pure integer arithmetic, no I/O. The provider share is rounded down and the
platform takes whatever remains, so a provider is never paid a cent that was
not earned and the two shares always add up to the net amount.

Usage:
    from billing.ledger.commission import calculate_commission_split

    split = calculate_commission_split(gross_cents=801, rate_bps=5000)
    split.provider_cents   # 400
    split.platform_cents   # 401
"""

from __future__ import annotations

from billing.ledger.types import CommissionSplit, ensure_cents
from core.exceptions import ValidationError

BPS_DENOMINATOR = 10_000


def calculate_commission_split(
    gross_cents: int,
    rate_bps: int,
    fee_cents: int = 0,
    has_provider: bool = True,
) -> CommissionSplit:
    """
    Split a payment between provider and platform.

    Args:
        gross_cents: Amount the payer was charged
        rate_bps: Provider share in basis points (0-10000)
        fee_cents: Gateway processing fee taken before the split
        has_provider: False when the subscription has no provider; the whole
            net amount then goes to the platform whatever ``rate_bps`` says

    Returns:
        CommissionSplit with provider_cents + platform_cents == gross - fee

    Raises:
        ValidationError: Non-integer, negative or overflowing amounts, a rate
            outside 0-10000, or a fee larger than the gross amount
    """
    ensure_cents("gross_cents", gross_cents)
    ensure_cents("fee_cents", fee_cents)

    if isinstance(rate_bps, bool) or not isinstance(rate_bps, int):
        raise ValidationError(
            "rate_bps must be an integer",
            error_code="INVALID_RATE",
            details={"rate_bps": repr(rate_bps)},
        )
    if not 0 <= rate_bps <= BPS_DENOMINATOR:
        raise ValidationError(
            "rate_bps must be between 0 and 10000",
            error_code="INVALID_RATE",
            details={"rate_bps": rate_bps},
        )
    if fee_cents > gross_cents:
        raise ValidationError(
            "fee_cents cannot exceed gross_cents",
            error_code="FEE_EXCEEDS_GROSS",
            details={"gross_cents": gross_cents, "fee_cents": fee_cents},
        )

    net_cents = gross_cents - fee_cents
    effective_rate = rate_bps if has_provider else 0
    provider_cents = net_cents * effective_rate // BPS_DENOMINATOR

    return CommissionSplit(
        gross_cents=gross_cents,
        fee_cents=fee_cents,
        provider_cents=provider_cents,
        platform_cents=net_cents - provider_cents,
        rate_bps=effective_rate,
    )
