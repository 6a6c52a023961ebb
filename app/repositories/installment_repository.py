"""
Installment Repository - persistence for installment plans and schedule entries.
"""

import logging
import uuid
from datetime import date
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConflictError, PersistenceError
from app.fsm.states import InstallmentStatus
from app.models.installment import InstallmentPlan, InstallmentScheduleEntry
from app.models.payment import utcnow

logger = logging.getLogger(__name__)


class InstallmentRepository:
    """Store for InstallmentPlan rows and their schedule entries."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        plan: InstallmentPlan,
        entries: List[InstallmentScheduleEntry],
    ) -> InstallmentPlan:
        """Insert a plan with its schedule. One plan per student and course."""
        self.db.add(plan)
        try:
            await self.db.flush()
            for entry in entries:
                entry.plan_id = plan.id
                self.db.add(entry)
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(
                f"Installment plan already exists for student {plan.student_id} "
                f"on course {plan.course_id}"
            ) from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to save installment plan: {e}") from e
        return plan

    async def get(self, plan_id: uuid.UUID) -> Optional[InstallmentPlan]:
        result = await self.db.execute(
            select(InstallmentPlan)
            .where(InstallmentPlan.id == plan_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_by_student_and_course(
        self,
        student_id: str,
        course_id: str,
    ) -> Optional[InstallmentPlan]:
        result = await self.db.execute(
            select(InstallmentPlan)
            .where(InstallmentPlan.student_id == student_id)
            .where(InstallmentPlan.course_id == course_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update(
        self,
        plan_id: uuid.UUID,
        expected_version: int,
        patch: Dict[str, Any],
    ) -> bool:
        """
        Apply `patch` only if the plan is still at `expected_version`.

        Bumps the version; returns True when exactly one row changed.
        """
        values = dict(patch)
        values["version"] = expected_version + 1
        values["updated_at"] = utcnow()

        result = await self.db.execute(
            update(InstallmentPlan)
            .where(InstallmentPlan.id == plan_id)
            .where(InstallmentPlan.version == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_entries(self, plan_id: uuid.UUID) -> List[InstallmentScheduleEntry]:
        result = await self.db.execute(
            select(InstallmentScheduleEntry)
            .where(InstallmentScheduleEntry.plan_id == plan_id)
            .order_by(InstallmentScheduleEntry.installment_number)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_entry(self, entry_id: uuid.UUID) -> Optional[InstallmentScheduleEntry]:
        result = await self.db.execute(
            select(InstallmentScheduleEntry)
            .where(InstallmentScheduleEntry.id == entry_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def find_entry(
        self,
        plan_id: uuid.UUID,
        installment_number: int,
    ) -> Optional[InstallmentScheduleEntry]:
        result = await self.db.execute(
            select(InstallmentScheduleEntry)
            .where(InstallmentScheduleEntry.plan_id == plan_id)
            .where(InstallmentScheduleEntry.installment_number == installment_number)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def first_unpaid_entry(self, plan_id: uuid.UUID) -> Optional[InstallmentScheduleEntry]:
        """Earliest entry still awaiting payment."""
        result = await self.db.execute(
            select(InstallmentScheduleEntry)
            .where(InstallmentScheduleEntry.plan_id == plan_id)
            .where(
                InstallmentScheduleEntry.status.in_(
                    [InstallmentStatus.PENDING.value, InstallmentStatus.OVERDUE.value]
                )
            )
            .order_by(InstallmentScheduleEntry.installment_number)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_overdue_entries(self, today: date) -> List[InstallmentScheduleEntry]:
        """Entries still pending whose due date is before `today`."""
        result = await self.db.execute(
            select(InstallmentScheduleEntry)
            .where(InstallmentScheduleEntry.status == InstallmentStatus.PENDING.value)
            .where(InstallmentScheduleEntry.due_date < today)
            .order_by(InstallmentScheduleEntry.due_date)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def update_entry(
        self,
        entry_id: uuid.UUID,
        expected_status: InstallmentStatus,
        patch: Dict[str, Any],
    ) -> bool:
        """Apply `patch` only if the entry is still in `expected_status`."""
        values = dict(patch)
        values["updated_at"] = utcnow()

        result = await self.db.execute(
            update(InstallmentScheduleEntry)
            .where(InstallmentScheduleEntry.id == entry_id)
            .where(InstallmentScheduleEntry.status == expected_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def cancel_pending_entries(self, plan_id: uuid.UUID) -> int:
        """Cancel every unpaid entry of a plan. Returns the number cancelled."""
        result = await self.db.execute(
            update(InstallmentScheduleEntry)
            .where(InstallmentScheduleEntry.plan_id == plan_id)
            .where(
                InstallmentScheduleEntry.status.in_(
                    [InstallmentStatus.PENDING.value, InstallmentStatus.OVERDUE.value]
                )
            )
            .values(status=InstallmentStatus.CANCELLED.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
