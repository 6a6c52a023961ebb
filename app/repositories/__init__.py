"""Repositories package - conditional-update stores over the database."""

from app.repositories.payment_repository import PaymentRepository
from app.repositories.installment_repository import InstallmentRepository
from app.repositories.reconciliation_repository import ReconciliationRepository

__all__ = [
    "PaymentRepository",
    "InstallmentRepository",
    "ReconciliationRepository",
]
