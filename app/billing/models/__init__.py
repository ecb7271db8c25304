"""
Billing domain models.

- Subscription: Entitlement and commission ledger row per deliverable
- PaymentEvent: Append-only gateway notification log (dedup table)
- CommissionRecord: Provider/platform split of one payment
- BillingTakeover: Workflow row for a payer takeover attempt
- TakeoverRecord: Audit entry for a completed takeover
"""

from billing.models.commission_record import CommissionRecord
from billing.models.payment_event import PaymentEvent
from billing.models.subscription import Subscription
from billing.models.takeover import BillingTakeover, TakeoverRecord

__all__ = [
    "BillingTakeover",
    "CommissionRecord",
    "PaymentEvent",
    "Subscription",
    "TakeoverRecord",
]
