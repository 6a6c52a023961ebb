"""Services package."""

from app.services.payment_service import PaymentService
from app.services.paystack_service import PaystackService
from app.services.installment_service import InstallmentService
from app.services.reconciliation_service import ReconciliationService

__all__ = [
    "PaymentService",
    "PaystackService",
    "InstallmentService",
    "ReconciliationService",
]
