"""
Status Definitions.
Payment, installment plan and schedule entry states plus billing enums.
"""

from datetime import date
from enum import Enum

from dateutil.relativedelta import relativedelta


class PaymentStatus(str, Enum):
    """
    Payment attempt states.
    A record is born PENDING; every other state is terminal.
    """

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self != PaymentStatus.PENDING


class PaymentType(str, Enum):
    """What a payment is for."""

    APPLICATION_FEE = "application_fee"
    COURSE_FEE = "course_fee"
    INSTALLMENT = "installment"

    @property
    def reduces_balance(self) -> bool:
        """Whether a confirmed payment of this type is credited to the plan balance."""
        return self in (PaymentType.COURSE_FEE, PaymentType.INSTALLMENT)


class PlanStatus(str, Enum):
    """Installment plan states. COMPLETED and CANCELLED are terminal."""

    ACTIVE = "active"
    COMPLETED = "completed"
    DEFAULTED = "defaulted"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PlanStatus.COMPLETED, PlanStatus.CANCELLED)


class InstallmentStatus(str, Enum):
    """Schedule entry states."""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PaymentPlan(str, Enum):
    """
    Installment cadence.
    Monthly and quarterly steps are calendar months, clamped to month end.
    """

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"

    def due_date(self, start: date, steps: int) -> date:
        """Date `steps` cadence intervals after `start`."""
        if self == PaymentPlan.WEEKLY:
            return start + relativedelta(days=7 * steps)
        months = 1 if self == PaymentPlan.MONTHLY else 3
        # Offset from the start date, so Jan 31 -> Feb 29 -> Mar 31
        return start + relativedelta(months=months * steps)


class ReconciliationTaskStatus(str, Enum):
    """Follow-up reconciliation task states."""

    PENDING = "pending"
    RESOLVED = "resolved"


# Gateway statuses that mean "not decided yet"
GATEWAY_PENDING_STATUSES = frozenset(
    {
        "pending",
        "ongoing",
        "processing",
        "queued",
        "send_otp",
        "send_birthday",
        "send_pin",
        "send_phone",
        "send_address",
        "open_url",
    }
)
