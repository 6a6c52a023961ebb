"""
Payment Repository - persistence for payment records.

Status changes go through conditional_update only, so two reconciliation
paths racing on one reference cannot both win.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import extract, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConflictError, PersistenceError
from app.fsm.states import PaymentStatus, PaymentType
from app.models.payment import PaymentRecord, utcnow

logger = logging.getLogger(__name__)


class PaymentRepository:
    """Store for PaymentRecord rows."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(self, record: PaymentRecord) -> PaymentRecord:
        """Insert a new record. Duplicate references raise ConflictError."""
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError(f"Payment reference already exists: {record.reference}") from e
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise PersistenceError(f"Failed to save payment {record.reference}: {e}") from e
        return record

    async def find_by_reference(self, reference: str) -> Optional[PaymentRecord]:
        """Look up by our reference, falling back to the gateway's reference."""
        for column in (PaymentRecord.reference, PaymentRecord.gateway_reference):
            result = await self.db.execute(
                select(PaymentRecord)
                .where(column == reference)
                .execution_options(populate_existing=True)
            )
            record = result.scalar_one_or_none()
            if record:
                return record
        return None

    async def conditional_update(
        self,
        reference: str,
        expected_status: PaymentStatus,
        patch: Dict[str, Any],
    ) -> bool:
        """
        Apply `patch` only if the record is still in `expected_status`.

        Returns True when exactly one row changed.
        """
        values = dict(patch)
        values["updated_at"] = utcnow()

        result = await self.db.execute(
            update(PaymentRecord)
            .where(PaymentRecord.reference == reference)
            .where(PaymentRecord.status == expected_status.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_by_student(
        self,
        student_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PaymentRecord]:
        result = await self.db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.student_id == student_id)
            .order_by(PaymentRecord.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    async def find_successful(
        self,
        student_id: str,
        course_id: str,
        payment_type: PaymentType,
    ) -> Optional[PaymentRecord]:
        """Most recent successful payment of a type for a student and course."""
        result = await self.db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.student_id == student_id)
            .where(PaymentRecord.course_id == course_id)
            .where(PaymentRecord.payment_type == payment_type.value)
            .where(PaymentRecord.status == PaymentStatus.SUCCESS.value)
            .order_by(PaymentRecord.paid_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def sum_successful_amount(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Decimal:
        """Total of successful payments, optionally within [start, end] on paid_at."""
        query = select(func.sum(PaymentRecord.amount)).where(
            PaymentRecord.status == PaymentStatus.SUCCESS.value
        )
        if start:
            query = query.where(PaymentRecord.paid_at >= start)
        if end:
            query = query.where(PaymentRecord.paid_at <= end)

        result = await self.db.execute(query)
        total = result.scalar()
        return Decimal(str(total)) if total is not None else Decimal("0")

    async def monthly_revenue(self, year: int) -> Dict[int, Decimal]:
        """Successful revenue per month (1-12) of `year`. Months without revenue are omitted."""
        month = extract("month", PaymentRecord.paid_at)
        result = await self.db.execute(
            select(month.label("month"), func.sum(PaymentRecord.amount).label("revenue"))
            .where(PaymentRecord.status == PaymentStatus.SUCCESS.value)
            .where(PaymentRecord.paid_at >= datetime(year, 1, 1, tzinfo=timezone.utc))
            .where(PaymentRecord.paid_at < datetime(year + 1, 1, 1, tzinfo=timezone.utc))
            .group_by(month)
        )
        return {
            int(row.month): Decimal(str(row.revenue))
            for row in result.all()
        }

    async def status_breakdown(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Count and amount per (status, payment_type), on created_at."""
        query = select(
            PaymentRecord.status,
            PaymentRecord.payment_type,
            func.count(PaymentRecord.id).label("count"),
            func.sum(PaymentRecord.amount).label("amount"),
        )
        if start:
            query = query.where(PaymentRecord.created_at >= start)
        if end:
            query = query.where(PaymentRecord.created_at <= end)

        result = await self.db.execute(
            query.group_by(PaymentRecord.status, PaymentRecord.payment_type)
        )
        return [
            {
                "status": row.status,
                "payment_type": row.payment_type,
                "count": int(row.count),
                "amount": Decimal(str(row.amount or 0)),
            }
            for row in result.all()
        ]
