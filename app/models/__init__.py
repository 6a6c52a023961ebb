"""Models package for database models."""

from app.models.payment import PaymentRecord
from app.models.installment import InstallmentPlan, InstallmentScheduleEntry
from app.models.reconciliation import ReconciliationTask

__all__ = [
    "PaymentRecord",
    "InstallmentPlan",
    "InstallmentScheduleEntry",
    "ReconciliationTask",
]
