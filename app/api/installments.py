"""
Installment Plan Endpoints.
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import verify_admin_key
from app.database import get_db
from app.fsm.states import PaymentPlan
from app.models.installment import InstallmentPlan, InstallmentScheduleEntry
from app.services.installment_service import InstallmentService

router = APIRouter()
logger = logging.getLogger(__name__)


class CreatePlanRequest(BaseModel):
    """Request body for creating an installment plan."""
    student_id: str
    course_id: str
    total_course_fee: Decimal = Field(gt=0)
    total_installments: int = Field(ge=1)
    payment_plan: PaymentPlan
    start_date: date
    currency: Optional[str] = None


class MarkPaidRequest(BaseModel):
    """Request body for marking an installment as paid."""
    payment_reference: str
    paid_date: Optional[date] = None


def plan_to_dict(plan: InstallmentPlan) -> Dict[str, Any]:
    return {
        "id": str(plan.id),
        "student_id": plan.student_id,
        "course_id": plan.course_id,
        "total_course_fee": float(plan.total_course_fee),
        "total_installments": plan.total_installments,
        "installment_amount": float(plan.installment_amount),
        "paid_installments": plan.paid_installments,
        "remaining_balance": float(plan.remaining_balance),
        "currency": plan.currency,
        "application_fee_paid": plan.application_fee_paid,
        "next_due_date": str(plan.next_due_date) if plan.next_due_date else None,
        "payment_plan": plan.payment_plan,
        "status": plan.status,
    }


def entry_to_dict(entry: InstallmentScheduleEntry, today: Optional[date] = None) -> Dict[str, Any]:
    return {
        "id": str(entry.id),
        "plan_id": str(entry.plan_id),
        "installment_number": entry.installment_number,
        "amount": float(entry.amount),
        "due_date": str(entry.due_date),
        "status": entry.effective_status(today).value,
        "paid_date": str(entry.paid_date) if entry.paid_date else None,
        "payment_reference": entry.payment_reference,
    }


@router.post("/plans")
async def create_plan(
    request: CreatePlanRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Create an installment plan and its schedule.

    The fee is split so every installment but the last is the rounded-up share.
    """
    service = InstallmentService(db)
    plan = await service.create_plan(
        student_id=request.student_id,
        course_id=request.course_id,
        total_course_fee=request.total_course_fee,
        total_installments=request.total_installments,
        payment_plan=request.payment_plan,
        start_date=request.start_date,
        currency=request.currency,
    )
    entries = await service.list_installments(plan.id)

    return {
        "status": "success",
        "plan": plan_to_dict(plan),
        "installments": [entry_to_dict(e) for e in entries],
    }


@router.get("/plans/student/{student_id}/course/{course_id}")
async def get_plan(
    student_id: str,
    course_id: str,
    db: AsyncSession = Depends(get_db),
):
    plan = await InstallmentService(db).get_plan(student_id, course_id)
    return {"status": "success", "plan": plan_to_dict(plan)}


@router.get("/plans/{plan_id}/installments")
async def list_installments(
    plan_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
):
    entries = await InstallmentService(db).list_installments(plan_id)
    return {
        "status": "success",
        "installments": [entry_to_dict(e) for e in entries],
    }


@router.post("/plans/{plan_id}/cancel")
async def cancel_plan(
    plan_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_admin_key),
):
    plan = await InstallmentService(db).cancel_plan(plan_id)
    logger.info(f"Plan cancelled via admin: {plan_id}")
    return {"status": "success", "plan": plan_to_dict(plan)}


@router.get("/overdue")
async def list_overdue_installments(
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_admin_key),
):
    """Pending installments whose due date has passed."""
    entries = await InstallmentService(db).find_overdue_installments()
    return {
        "status": "success",
        "count": len(entries),
        "installments": [entry_to_dict(e) for e in entries],
    }


@router.post("/{installment_id}/mark-paid")
async def mark_installment_paid(
    installment_id: uuid.UUID,
    request: MarkPaidRequest,
    db: AsyncSession = Depends(get_db),
    _: None = Depends(verify_admin_key),
):
    entry = await InstallmentService(db).mark_installment_paid(
        installment_id,
        request.payment_reference,
        paid_date=request.paid_date,
    )
    return {"status": "success", "installment": entry_to_dict(entry)}
