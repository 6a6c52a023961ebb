"""Installment plan and schedule entry models."""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import InstallmentStatus, PaymentPlan, PlanStatus
from app.models.payment import utcnow


class InstallmentPlan(Base):
    """
    Billing plan for one student on one course.

    remaining_balance only ever goes down, and only through the
    ReconciliationService. `version` guards concurrent plan updates.
    """

    __tablename__ = "installment_plans"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    course_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    total_course_fee: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    total_installments: Mapped[int] = mapped_column(Integer, nullable=False)

    # Regular installment amount; the last installment may be smaller
    installment_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    paid_installments: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    remaining_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), default="GHS", nullable=False)

    application_fee_paid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    application_fee_reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    next_due_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True, index=True)

    payment_plan: Mapped[str] = mapped_column(
        String(16),
        default=PaymentPlan.MONTHLY.value,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(16),
        default=PlanStatus.ACTIVE.value,
        nullable=False,
        index=True,
    )

    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_installment_plans_student_course"),
    )

    def __repr__(self) -> str:
        return (
            f"<InstallmentPlan {self.student_id}/{self.course_id} "
            f"remaining={self.remaining_balance} status={self.status}>"
        )

    @property
    def plan_status(self) -> PlanStatus:
        return PlanStatus(self.status)

    @property
    def cadence(self) -> PaymentPlan:
        return PaymentPlan(self.payment_plan)


class InstallmentScheduleEntry(Base):
    """One row per installment of a plan."""

    __tablename__ = "installment_schedule_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("installment_plans.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Stays `pending` after the due date passes; overdue is computed on read
    status: Mapped[str] = mapped_column(
        String(16),
        default=InstallmentStatus.PENDING.value,
        nullable=False,
    )

    paid_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payment_reference: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("plan_id", "installment_number", name="uq_schedule_plan_number"),
    )

    def __repr__(self) -> str:
        return f"<InstallmentScheduleEntry #{self.installment_number} due={self.due_date} status={self.status}>"

    def effective_status(self, today: Optional[date] = None) -> InstallmentStatus:
        """Status for display: a pending entry past its due date reads as overdue."""
        today = today or datetime.now(timezone.utc).date()
        status = InstallmentStatus(self.status)
        if status == InstallmentStatus.PENDING and self.due_date < today:
            return InstallmentStatus.OVERDUE
        return status
