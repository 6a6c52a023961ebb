"""
Payment Endpoints.
Checkout initialization, verification, lookups and revenue reporting.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from app.api.deps import get_payment_service, verify_admin_key
from app.fsm.states import PaymentType
from app.models.payment import PaymentRecord
from app.services.payment_service import PaymentService

router = APIRouter()
logger = logging.getLogger(__name__)


class InitializePaymentRequest(BaseModel):
    """Request body for opening a hosted checkout."""
    student_id: str
    course_id: str
    email: str
    amount: Decimal = Field(gt=0)
    payment_type: PaymentType = PaymentType.APPLICATION_FEE
    currency: Optional[str] = None
    callback_url: Optional[str] = None
    installment_number: Optional[int] = None
    total_installments: Optional[int] = None
    installment_amount: Optional[Decimal] = None
    remaining_balance_after: Optional[Decimal] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def payment_to_dict(payment: PaymentRecord) -> Dict[str, Any]:
    return {
        "reference": payment.reference,
        "gateway_reference": payment.gateway_reference,
        "student_id": payment.student_id,
        "course_id": payment.course_id,
        "email": payment.email,
        "amount": float(payment.amount),
        "currency": payment.currency,
        "payment_type": payment.payment_type,
        "status": payment.status,
        "installment_number": payment.installment_number,
        "total_installments": payment.total_installments,
        "paid_at": payment.paid_at.isoformat() if payment.paid_at else None,
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
    }


@router.post("/initialize")
async def initialize_payment(
    request: InitializePaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """
    Open a Paystack checkout for a payment.

    The payment is recorded as pending only once Paystack accepted it.
    """
    result = await service.initialize_payment(
        student_id=request.student_id,
        course_id=request.course_id,
        amount=request.amount,
        email=request.email,
        payment_type=request.payment_type,
        callback_url=request.callback_url,
        currency=request.currency,
        installment_number=request.installment_number,
        total_installments=request.total_installments,
        installment_amount=request.installment_amount,
        remaining_balance_after=request.remaining_balance_after,
        metadata=request.metadata,
    )

    return {
        "status": "success",
        "reference": result.reference,
        "authorization_url": result.authorization_url,
        "access_code": result.access_code,
    }


@router.get("/verify/{reference}")
async def verify_payment(
    reference: str,
    service: PaymentService = Depends(get_payment_service),
):
    """Verify a payment with Paystack and apply the result."""
    result = await service.verify_payment(reference)

    return {
        "status": "success",
        "payment": {
            "reference": result.reference,
            "status": result.status,
            "amount": float(result.amount),
            "currency": result.currency,
            "channel": result.channel,
            "paid_at": result.paid_at.isoformat() if result.paid_at else None,
            "reconciliation_pending": result.reconciliation_pending,
        },
    }


@router.get("/student/{student_id}")
async def list_student_payments(
    student_id: str,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    service: PaymentService = Depends(get_payment_service),
):
    payments = await service.list_payments_by_student(student_id, limit=limit, offset=offset)
    return {
        "status": "success",
        "count": len(payments),
        "payments": [payment_to_dict(p) for p in payments],
    }


@router.get("/revenue/total")
async def total_revenue(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: PaymentService = Depends(get_payment_service),
    _: None = Depends(verify_admin_key),
):
    revenue = await service.get_total_revenue(start, end)
    return {"status": "success", "total_revenue": float(revenue)}


@router.get("/revenue/monthly/{year}")
async def monthly_revenue(
    year: int,
    service: PaymentService = Depends(get_payment_service),
    _: None = Depends(verify_admin_key),
):
    months = await service.get_monthly_revenue(year)
    return {
        "status": "success",
        "year": year,
        "months": [
            {"month": m["month"], "revenue": float(m["revenue"])} for m in months
        ],
    }


@router.get("/analytics/overview")
async def payment_analytics(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    service: PaymentService = Depends(get_payment_service),
    _: None = Depends(verify_admin_key),
):
    """Payment counts and totals per status and per payment type."""
    analytics = await service.get_payment_analytics(start, end)

    return {
        "status": "success",
        "total_payments": analytics["total_payments"],
        "total_revenue": float(analytics["total_revenue"]),
        "success_rate": analytics["success_rate"],
        "by_status": {
            status: {"count": b["count"], "amount": float(b["amount"])}
            for status, b in analytics["by_status"].items()
        },
        "by_type": {
            payment_type: {"count": b["count"], "revenue": float(b["revenue"])}
            for payment_type, b in analytics["by_type"].items()
        },
    }


@router.get("/{reference}")
async def get_payment(
    reference: str,
    service: PaymentService = Depends(get_payment_service),
):
    """Look up a payment by our reference or the gateway's."""
    payment = await service.get_payment_by_reference(reference)
    return {"status": "success", "payment": payment_to_dict(payment)}
