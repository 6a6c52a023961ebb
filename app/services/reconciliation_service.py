"""
Reconciliation Service - credits confirmed payments to installment plans.

Runs once per payment reference, right after the payment's transition to
success has been committed. A failure here never touches the payment: the
plan changes are rolled back and a ReconciliationTask is left for the
re-drive worker.
"""

import logging
from decimal import Decimal
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConflictError, NotFoundError, PaymentError, PersistenceError
from app.fsm.machine import can_transition_plan
from app.fsm.states import InstallmentStatus, PaymentStatus, PaymentType, PlanStatus
from app.models.payment import PaymentRecord
from app.models.reconciliation import ReconciliationTask
from app.repositories.installment_repository import InstallmentRepository
from app.repositories.payment_repository import PaymentRepository
from app.repositories.reconciliation_repository import ReconciliationRepository
from app.services.installment_service import InstallmentService

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Applies confirmed payments to installment plans exactly once."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.plans = InstallmentRepository(db)
        self.payments = PaymentRepository(db)
        self.tasks = ReconciliationRepository(db)
        self.installments = InstallmentService(db)

    async def on_payment_confirmed(self, payment: PaymentRecord) -> bool:
        """
        Credit a successful payment to its plan and commit.

        Returns False when the plan update failed and a reconciliation task
        was recorded instead.
        """
        reference = payment.reference

        try:
            await self._apply(payment)
            await self.db.commit()
            return True
        except (PaymentError, SQLAlchemyError) as e:
            await self.db.rollback()
            await self._record_pending(reference, e)
            return False

    async def redrive_pending(self, limit: int = 50) -> int:
        """
        Retry plan updates for pending reconciliation tasks.

        The task is resolved in the same transaction as the plan update.
        Returns the number of tasks resolved.
        """
        tasks = await self.tasks.list_pending(limit)
        references = [task.payment_reference for task in tasks]

        resolved = 0
        for reference in references:
            try:
                payment = await self.payments.find_by_reference(reference)
                if not payment:
                    raise NotFoundError(f"Payment not found: {reference}")
                if payment.status != PaymentStatus.SUCCESS.value:
                    raise ConflictError(f"Payment {reference} is {payment.status}, not success")

                await self._apply(payment)

                if not await self.tasks.resolve(reference):
                    raise ConflictError(f"Reconciliation task {reference} already resolved")

                await self.db.commit()
                resolved += 1
                logger.info(f"Reconciliation resolved for {reference}")
            except (PaymentError, SQLAlchemyError) as e:
                await self.db.rollback()
                await self._record_pending(reference, e)

        return resolved

    async def list_pending_tasks(self, limit: int = 50) -> List[ReconciliationTask]:
        return await self.tasks.list_pending(limit)

    async def _apply(self, payment: PaymentRecord) -> None:
        plan = await self.plans.find_by_student_and_course(payment.student_id, payment.course_id)

        if not payment.type.reduces_balance:
            if not plan:
                # Carried onto the plan by InstallmentService.create_plan
                logger.info(f"Application fee {payment.reference} confirmed, no plan yet")
                return
            if plan.application_fee_paid and plan.application_fee_reference == payment.reference:
                return

            applied = await self.plans.update(
                plan.id,
                plan.version,
                {
                    "application_fee_paid": True,
                    "application_fee_reference": payment.reference,
                },
            )
            if not applied:
                raise ConflictError(f"Installment plan {plan.id} was updated concurrently")

            logger.info(f"Application fee {payment.reference} recorded on plan {plan.id}")
            return

        if not plan:
            if payment.type == PaymentType.COURSE_FEE:
                # Full payment outside any installment plan
                logger.info(f"Course fee {payment.reference} confirmed, no installment plan")
                return
            raise NotFoundError(
                f"No installment plan for student {payment.student_id} "
                f"on course {payment.course_id}"
            )

        amount = Decimal(payment.amount)
        remaining = Decimal(plan.remaining_balance) - amount
        if remaining < 0:
            logger.warning(
                f"Payment {payment.reference} overpays plan {plan.id} by {-remaining}",
                extra={"payment_reference": payment.reference, "plan_id": plan.id},
            )
            remaining = Decimal("0")

        patch = {
            "remaining_balance": remaining,
            "paid_installments": min(plan.paid_installments + 1, plan.total_installments),
            "next_due_date": (
                plan.cadence.due_date(plan.next_due_date, 1) if plan.next_due_date else None
            ),
        }
        if remaining <= 0 and can_transition_plan(plan.plan_status, PlanStatus.COMPLETED):
            patch["status"] = PlanStatus.COMPLETED.value

        applied = await self.plans.update(plan.id, plan.version, patch)
        if not applied:
            raise ConflictError(f"Installment plan {plan.id} was updated concurrently")

        await self._mark_schedule_entry(plan.id, payment)

        logger.info(
            f"Payment {payment.reference} credited to plan {plan.id}: "
            f"{amount} paid, {remaining} remaining"
        )
        if patch.get("status") == PlanStatus.COMPLETED.value:
            logger.info(f"Installment plan {plan.id} completed")

    async def _mark_schedule_entry(self, plan_id, payment: PaymentRecord) -> None:
        """Mark the installment this payment funds: its own number, else the earliest unpaid."""
        entry = None
        if payment.installment_number:
            entry = await self.plans.find_entry(plan_id, payment.installment_number)
            if entry and entry.status not in (
                InstallmentStatus.PENDING.value,
                InstallmentStatus.OVERDUE.value,
            ):
                entry = None

        if entry is None:
            entry = await self.plans.first_unpaid_entry(plan_id)

        if entry is None:
            logger.warning(f"No unpaid installment left on plan {plan_id} for {payment.reference}")
            return

        await self.installments.mark_installment_paid(entry.id, payment.reference)

    async def _record_pending(self, reference: str, error: Exception) -> None:
        logger.error(
            f"Reconciliation pending for payment {reference}: {error}",
            extra={"payment_reference": reference},
        )
        try:
            await self.tasks.record_failure(reference, str(error))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.critical(
                f"Could not record reconciliation task for {reference}: {e}",
                extra={"payment_reference": reference},
            )
            raise PersistenceError(f"Reconciliation task for {reference} could not be saved") from e
