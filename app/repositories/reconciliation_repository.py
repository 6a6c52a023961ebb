"""
Reconciliation Repository - follow-up tasks for plan updates that failed
after the gateway confirmed a payment.
"""

import logging
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.fsm.states import ReconciliationTaskStatus
from app.models.payment import utcnow
from app.models.reconciliation import ReconciliationTask

logger = logging.getLogger(__name__)


class ReconciliationRepository:
    """Store for ReconciliationTask rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_by_reference(self, payment_reference: str) -> Optional[ReconciliationTask]:
        result = await self.db.execute(
            select(ReconciliationTask)
            .where(ReconciliationTask.payment_reference == payment_reference)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def record_failure(self, payment_reference: str, error: str) -> ReconciliationTask:
        """Open a task for the reference, or count another failed attempt on it."""
        task = await self.get_by_reference(payment_reference)

        if task is None:
            task = ReconciliationTask(
                payment_reference=payment_reference,
                status=ReconciliationTaskStatus.PENDING.value,
                attempts=1,
                last_error=error,
            )
            self.db.add(task)
        else:
            task.attempts += 1
            task.last_error = error
            task.status = ReconciliationTaskStatus.PENDING.value
            task.resolved_at = None
            task.updated_at = utcnow()

        await self.db.flush()
        return task

    async def list_pending(self, limit: int = 50) -> List[ReconciliationTask]:
        """Pending tasks, least recently attempted first."""
        result = await self.db.execute(
            select(ReconciliationTask)
            .where(ReconciliationTask.status == ReconciliationTaskStatus.PENDING.value)
            .order_by(ReconciliationTask.updated_at, ReconciliationTask.created_at)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def resolve(self, payment_reference: str) -> bool:
        """Mark the task resolved if it is still pending."""
        now = utcnow()
        result = await self.db.execute(
            update(ReconciliationTask)
            .where(ReconciliationTask.payment_reference == payment_reference)
            .where(ReconciliationTask.status == ReconciliationTaskStatus.PENDING.value)
            .values(
                status=ReconciliationTaskStatus.RESOLVED.value,
                resolved_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
