"""
Status Machine - legal transitions for payments, plans and schedule entries.

Stores apply transitions with conditional writes; this module only answers
"is this move allowed" and maps raw gateway statuses onto payment states.
"""

import logging
from typing import Dict, FrozenSet, Optional

from app.exceptions import ConflictError
from app.fsm.states import (
    GATEWAY_PENDING_STATUSES,
    InstallmentStatus,
    PaymentStatus,
    PlanStatus,
)

logger = logging.getLogger(__name__)


PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED}
    ),
    PaymentStatus.SUCCESS: frozenset(),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.CANCELLED: frozenset(),
}

PLAN_TRANSITIONS: Dict[PlanStatus, FrozenSet[PlanStatus]] = {
    PlanStatus.ACTIVE: frozenset(
        {PlanStatus.COMPLETED, PlanStatus.DEFAULTED, PlanStatus.CANCELLED}
    ),
    PlanStatus.DEFAULTED: frozenset(
        {PlanStatus.ACTIVE, PlanStatus.COMPLETED, PlanStatus.CANCELLED}
    ),
    PlanStatus.COMPLETED: frozenset(),
    PlanStatus.CANCELLED: frozenset(),
}

INSTALLMENT_TRANSITIONS: Dict[InstallmentStatus, FrozenSet[InstallmentStatus]] = {
    InstallmentStatus.PENDING: frozenset(
        {InstallmentStatus.PAID, InstallmentStatus.OVERDUE, InstallmentStatus.CANCELLED}
    ),
    InstallmentStatus.OVERDUE: frozenset(
        {InstallmentStatus.PAID, InstallmentStatus.CANCELLED}
    ),
    InstallmentStatus.PAID: frozenset(),
    InstallmentStatus.CANCELLED: frozenset(),
}


def can_transition_payment(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in PAYMENT_TRANSITIONS[current]


def can_transition_plan(current: PlanStatus, target: PlanStatus) -> bool:
    return target in PLAN_TRANSITIONS[current]


def can_transition_installment(
    current: InstallmentStatus,
    target: InstallmentStatus,
) -> bool:
    return target in INSTALLMENT_TRANSITIONS[current]


def ensure_plan_transition(current: PlanStatus, target: PlanStatus) -> None:
    """Raise ConflictError unless the plan may move from `current` to `target`."""
    if not can_transition_plan(current, target):
        raise ConflictError(
            f"Installment plan cannot move from {current.value} to {target.value}"
        )


def ensure_installment_transition(
    current: InstallmentStatus,
    target: InstallmentStatus,
) -> None:
    """Raise ConflictError unless the entry may move from `current` to `target`."""
    if not can_transition_installment(current, target):
        raise ConflictError(
            f"Installment cannot move from {current.value} to {target.value}"
        )


def resolve_gateway_status(gateway_status: Optional[str]) -> Optional[PaymentStatus]:
    """
    Map a raw gateway status onto a terminal payment status.

    Returns None while the gateway still reports the charge as in flight.
    Anything that is neither "success" nor in flight counts as failed
    (abandoned, reversed, failed, unknown values).
    """
    normalized = (gateway_status or "").strip().lower()

    if normalized == "success":
        return PaymentStatus.SUCCESS

    if normalized in GATEWAY_PENDING_STATUSES:
        return None

    if normalized not in ("failed", "abandoned", "reversed"):
        logger.warning(f"Unrecognized gateway status '{gateway_status}', treating as failed")

    return PaymentStatus.FAILED
