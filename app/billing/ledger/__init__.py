"""
Ledger layer: money types, the commission calculator and the ledger store.

Usage:
    from billing.ledger import SubscriptionLedger, calculate_commission_split, Money
"""

from billing.ledger.commission import calculate_commission_split
from billing.ledger.services import SubscriptionLedger
from billing.ledger.types import MAX_CENTS, CommissionSplit, Money

__all__ = [
    "MAX_CENTS",
    "CommissionSplit",
    "Money",
    "SubscriptionLedger",
    "calculate_commission_split",
]
