"""Status machine package."""

from app.fsm.states import (
    InstallmentStatus,
    PaymentPlan,
    PaymentStatus,
    PaymentType,
    PlanStatus,
    ReconciliationTaskStatus,
)

__all__ = [
    "InstallmentStatus",
    "PaymentPlan",
    "PaymentStatus",
    "PaymentType",
    "PlanStatus",
    "ReconciliationTaskStatus",
]
