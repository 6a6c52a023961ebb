"""
Installment Service - plan creation, schedule splitting and overdue tracking.

Plan balances are never touched here; ReconciliationService owns them.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import ROUND_CEILING, Decimal
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import ConflictError, NotFoundError, ValidationError
from app.fsm.machine import ensure_installment_transition, ensure_plan_transition
from app.fsm.states import InstallmentStatus, PaymentPlan, PaymentType, PlanStatus
from app.models.installment import InstallmentPlan, InstallmentScheduleEntry
from app.repositories.installment_repository import InstallmentRepository
from app.repositories.payment_repository import PaymentRepository

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def split_installments(total_course_fee: Decimal, total_installments: int) -> List[Decimal]:
    """
    Split a fee into installment amounts.

    Every installment is ceil(total / n) except the last, which absorbs the
    remainder, so the amounts always sum to the total exactly.

    >>> split_installments(Decimal("1000"), 3)
    [Decimal('334.00'), Decimal('334.00'), Decimal('332.00')]
    """
    total = Decimal(total_course_fee)

    if total_installments < 1:
        raise ValidationError("Total installments must be at least 1")
    if total <= 0:
        raise ValidationError("Total course fee must be greater than zero")

    if total_installments == 1:
        return [total.quantize(CENTS)]

    installment_amount = (total / total_installments).to_integral_value(rounding=ROUND_CEILING)
    last_amount = total - installment_amount * (total_installments - 1)

    if last_amount <= 0:
        raise ValidationError(
            f"A fee of {total} cannot be split into {total_installments} installments "
            f"of {installment_amount}"
        )

    amounts = [installment_amount.quantize(CENTS)] * (total_installments - 1)
    amounts.append(last_amount.quantize(CENTS))
    return amounts


def due_dates(start_date: date, total_installments: int, payment_plan: PaymentPlan) -> List[date]:
    """Installment i (1-indexed) is due at start + (i - 1) cadence intervals."""
    return [payment_plan.due_date(start_date, i) for i in range(total_installments)]


class InstallmentService:
    """Service for installment plans and their schedules."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.plans = InstallmentRepository(db)
        self.payments = PaymentRepository(db)

    async def create_plan(
        self,
        student_id: str,
        course_id: str,
        total_course_fee: Decimal,
        total_installments: int,
        payment_plan: PaymentPlan,
        start_date: date,
        currency: Optional[str] = None,
    ) -> InstallmentPlan:
        """
        Create an active plan and its schedule.

        An application fee already confirmed for the student and course is
        carried onto the new plan.
        """
        try:
            payment_plan = PaymentPlan(payment_plan)
        except ValueError:
            raise ValidationError(f"Unknown payment plan: {payment_plan}")

        total = Decimal(str(total_course_fee))
        amounts = split_installments(total, total_installments)
        dates = due_dates(start_date, total_installments, payment_plan)

        application_fee = await self.payments.find_successful(
            student_id, course_id, PaymentType.APPLICATION_FEE
        )

        plan = InstallmentPlan(
            student_id=student_id,
            course_id=course_id,
            total_course_fee=total,
            total_installments=total_installments,
            installment_amount=amounts[0],
            paid_installments=0,
            remaining_balance=total,
            currency=currency or settings.default_currency,
            application_fee_paid=application_fee is not None,
            application_fee_reference=application_fee.reference if application_fee else None,
            next_due_date=dates[0],
            payment_plan=payment_plan.value,
            status=PlanStatus.ACTIVE.value,
            version=1,
        )

        entries = [
            InstallmentScheduleEntry(
                installment_number=number,
                amount=amount,
                due_date=due_date,
                status=InstallmentStatus.PENDING.value,
            )
            for number, (amount, due_date) in enumerate(zip(amounts, dates), start=1)
        ]

        await self.plans.create(plan, entries)

        logger.info(
            f"Created {payment_plan.value} plan {plan.id} for student {student_id} "
            f"on course {course_id}: {total} in {total_installments} installments"
        )
        return plan

    async def get_plan(self, student_id: str, course_id: str) -> InstallmentPlan:
        plan = await self.plans.find_by_student_and_course(student_id, course_id)
        if not plan:
            raise NotFoundError(
                f"No installment plan for student {student_id} on course {course_id}"
            )
        return plan

    async def get_plan_by_id(self, plan_id: uuid.UUID) -> InstallmentPlan:
        plan = await self.plans.get(plan_id)
        if not plan:
            raise NotFoundError(f"Installment plan not found: {plan_id}")
        return plan

    async def list_installments(self, plan_id: uuid.UUID) -> List[InstallmentScheduleEntry]:
        await self.get_plan_by_id(plan_id)
        return await self.plans.list_entries(plan_id)

    async def find_overdue_installments(
        self,
        now: Optional[datetime] = None,
    ) -> List[InstallmentScheduleEntry]:
        """
        Pending entries whose due date has passed.

        Pure read: the stored status stays `pending`.
        """
        now = now or datetime.now(timezone.utc)
        return await self.plans.list_overdue_entries(now.date())

    async def mark_installment_paid(
        self,
        installment_id: uuid.UUID,
        payment_reference: str,
        paid_date: Optional[date] = None,
    ) -> InstallmentScheduleEntry:
        """
        Mark a schedule entry paid.

        Repeating the call with the same reference returns the entry unchanged.
        """
        entry = await self.plans.get_entry(installment_id)
        if not entry:
            raise NotFoundError(f"Installment not found: {installment_id}")

        current = InstallmentStatus(entry.status)
        if current == InstallmentStatus.PAID and entry.payment_reference == payment_reference:
            return entry

        ensure_installment_transition(current, InstallmentStatus.PAID)

        applied = await self.plans.update_entry(
            entry.id,
            current,
            {
                "status": InstallmentStatus.PAID.value,
                "paid_date": paid_date or datetime.now(timezone.utc).date(),
                "payment_reference": payment_reference,
            },
        )
        if not applied:
            entry = await self.plans.get_entry(installment_id)
            if entry.status == InstallmentStatus.PAID.value and entry.payment_reference == payment_reference:
                return entry
            raise ConflictError(f"Installment {installment_id} was updated concurrently")

        logger.info(
            f"Installment #{entry.installment_number} of plan {entry.plan_id} "
            f"paid with {payment_reference}"
        )
        return await self.plans.get_entry(installment_id)

    async def cancel_plan(self, plan_id: uuid.UUID) -> InstallmentPlan:
        """Cancel a plan and every unpaid installment on it."""
        plan = await self.get_plan_by_id(plan_id)
        ensure_plan_transition(plan.plan_status, PlanStatus.CANCELLED)

        applied = await self.plans.update(
            plan.id,
            plan.version,
            {"status": PlanStatus.CANCELLED.value},
        )
        if not applied:
            raise ConflictError(f"Installment plan {plan_id} was updated concurrently")

        cancelled = await self.plans.cancel_pending_entries(plan_id)
        logger.info(f"Cancelled plan {plan_id} ({cancelled} unpaid installments)")
        return await self.get_plan_by_id(plan_id)
