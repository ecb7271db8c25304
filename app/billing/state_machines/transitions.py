"""
Subscription transition table.

Every legal (state, event) pair maps to exactly one Transition naming the
target state, the django-fsm method that performs the state change on the
model (None for same-state transitions) and the side effects the ledger
must apply. Pairs absent from the table are not legal: gateway events for
them are logged and ignored, user actions for them are rejected.

This module has no database or network dependency, so each edge can be
tested on its own.

Usage:
    from billing.state_machines.transitions import resolve_transition

    transition = resolve_transition(SubscriptionState.PAST_DUE, SubscriptionEvent.CHARGE_FAILED)
    transition.target            # SubscriptionState.GRACE_PERIOD
    Effect.START_GRACE_PERIOD in transition.effects  # True
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from billing.state_machines.states import SubscriptionEvent, SubscriptionState

S = SubscriptionState
E = SubscriptionEvent


class Effect(str, Enum):
    """Side effects applied by the ledger together with a transition."""

    POST_COMMISSION = "post_commission"
    SYNC_PERIOD = "sync_period"
    SYNC_CANCEL_FLAG = "sync_cancel_flag"
    CLEAR_GRACE_DEADLINE = "clear_grace_deadline"
    START_GRACE_PERIOD = "start_grace_period"
    RECORD_FAILURE = "record_failure"
    RESET_FAILURES = "reset_failures"
    SUSPEND_ACCESS = "suspend_access"
    RESTORE_ACCESS = "restore_access"
    MARK_PAYER_OVERDUE = "mark_payer_overdue"
    RESTORE_PAYER_ACCOUNT = "restore_payer_account"
    SET_CANCEL_FLAG = "set_cancel_flag"
    CLEAR_CANCEL_FLAG = "clear_cancel_flag"
    MARK_GATEWAY_ENDED = "mark_gateway_ended"
    REBIND_GATEWAY_SUBSCRIPTION = "rebind_gateway_subscription"
    RECORD_CANCELLATION = "record_cancellation"


@dataclass(frozen=True)
class Transition:
    """One edge of the subscription state machine."""

    source: str
    event: str
    target: str
    fsm_method: str | None = None
    effects: tuple[Effect, ...] = ()

    @property
    def changes_state(self) -> bool:
        return self.source != self.target


# =============================================================================
# Effect bundles
# =============================================================================

CHARGE_SUCCEEDED_EFFECTS = (
    Effect.SYNC_PERIOD,
    Effect.CLEAR_GRACE_DEADLINE,
    Effect.RESET_FAILURES,
    Effect.RESTORE_ACCESS,
    Effect.RESTORE_PAYER_ACCOUNT,
    Effect.POST_COMMISSION,
)

RESUME_EFFECTS = (
    Effect.CLEAR_GRACE_DEADLINE,
    Effect.CLEAR_CANCEL_FLAG,
    Effect.RESTORE_ACCESS,
    Effect.REBIND_GATEWAY_SUBSCRIPTION,
)


def _edges(
    sources: list[str],
    event: str,
    target: str | None = None,
    fsm_method: str | None = None,
    effects: tuple[Effect, ...] = (),
) -> dict[tuple[str, str], Transition]:
    """Build edges from several sources; target None means 'stay put'."""
    edges = {}
    for source in sources:
        destination = source if target is None else target
        edges[(source, event)] = Transition(
            source=source,
            event=event,
            target=destination,
            fsm_method=fsm_method if destination != source else None,
            effects=effects,
        )
    return edges


# =============================================================================
# Table
# =============================================================================

TRANSITION_TABLE: dict[tuple[str, str], Transition] = {
    # Successful charge: renewals stay active, everything recoverable re-enters
    **_edges([S.ACTIVE], E.CHARGE_SUCCEEDED, effects=CHARGE_SUCCEEDED_EFFECTS),
    **_edges(
        [S.TRIALING, S.PAST_DUE, S.GRACE_PERIOD, S.SUSPENDED],
        E.CHARGE_SUCCEEDED,
        S.ACTIVE,
        "activate",
        CHARGE_SUCCEEDED_EFFECTS,
    ),
    # Failed charge: first failure goes past due, second opens the grace period
    **_edges(
        [S.TRIALING, S.ACTIVE],
        E.CHARGE_FAILED,
        S.PAST_DUE,
        "mark_past_due",
        (Effect.RECORD_FAILURE, Effect.MARK_PAYER_OVERDUE),
    ),
    **_edges(
        [S.PAST_DUE],
        E.CHARGE_FAILED,
        S.GRACE_PERIOD,
        "enter_grace_period",
        (Effect.RECORD_FAILURE, Effect.START_GRACE_PERIOD, Effect.MARK_PAYER_OVERDUE),
    ),
    **_edges([S.GRACE_PERIOD], E.CHARGE_FAILED, effects=(Effect.RECORD_FAILURE,)),
    # Gateway-side metadata changes
    **_edges(
        [S.TRIALING, S.ACTIVE, S.PAST_DUE, S.GRACE_PERIOD, S.CANCEL_PENDING, S.SUSPENDED],
        E.SUBSCRIPTION_UPDATED,
        effects=(Effect.SYNC_PERIOD, Effect.SYNC_CANCEL_FLAG),
    ),
    # Gateway ended the subscription: access runs to period end, then grace
    **_edges(
        [S.TRIALING, S.ACTIVE, S.PAST_DUE, S.GRACE_PERIOD],
        E.SUBSCRIPTION_DELETED,
        S.CANCEL_PENDING,
        "mark_cancel_pending",
        (Effect.SYNC_PERIOD, Effect.MARK_GATEWAY_ENDED),
    ),
    **_edges([S.SUSPENDED], E.SUBSCRIPTION_DELETED, effects=(Effect.MARK_GATEWAY_ENDED,)),
    **_edges(
        [S.CANCEL_PENDING],
        E.PERIOD_ENDED,
        S.GRACE_PERIOD,
        "enter_grace_period",
        (Effect.START_GRACE_PERIOD,),
    ),
    # User actions
    **_edges(
        [S.TRIALING, S.ACTIVE, S.PAST_DUE, S.GRACE_PERIOD],
        E.CANCEL_REQUESTED,
        effects=(Effect.SET_CANCEL_FLAG,),
    ),
    **_edges(
        [S.TRIALING, S.ACTIVE, S.PAST_DUE],
        E.RESUME_REQUESTED,
        effects=(Effect.CLEAR_CANCEL_FLAG,),
    ),
    **_edges(
        [S.GRACE_PERIOD, S.CANCEL_PENDING],
        E.RESUME_REQUESTED,
        S.ACTIVE,
        "resume",
        RESUME_EFFECTS,
    ),
    # Grace deadline passed
    **_edges(
        [S.GRACE_PERIOD],
        E.GRACE_EXPIRED,
        S.SUSPENDED,
        "suspend",
        (Effect.SUSPEND_ACCESS,),
    ),
    **_edges(
        [S.GRACE_PERIOD],
        E.CANCELLATION_COMPLETED,
        S.CANCELLED,
        "cancel",
        (Effect.SUSPEND_ACCESS, Effect.RECORD_CANCELLATION),
    ),
}


def resolve_transition(state: str, event: str) -> Transition | None:
    """
    Look up the transition for ``event`` arriving in ``state``.

    Returns:
        The Transition, or None when the pair is not legal.
    """
    return TRANSITION_TABLE.get((state, event))


def legal_events(state: str) -> list[str]:
    """Events that have an edge out of ``state``."""
    return [event for (source, event) in TRANSITION_TABLE if source == state]
