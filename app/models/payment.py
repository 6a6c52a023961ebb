"""Payment model - one record per payment attempt, keyed by reference."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import PaymentStatus, PaymentType


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PaymentRecord(Base):
    """
    Payment attempt against the gateway.

    `reference` is generated by us and is the idempotency key for every
    reconciliation path. Status leaves `pending` exactly once, through a
    conditional update in PaymentRepository.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Our reference (unique, idempotency key)
    reference: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
        index=True,
    )

    # Gateway transaction id, known once the gateway reports back
    gateway_reference: Mapped[Optional[str]] = mapped_column(
        String(64),
        unique=True,
        nullable=True,
    )

    student_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    course_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
    )

    # Payer email sent to the gateway
    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(
        String(3),
        default="GHS",
        nullable=False,
    )

    payment_type: Mapped[str] = mapped_column(
        String(32),
        default=PaymentType.APPLICATION_FEE.value,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(16),
        default=PaymentStatus.PENDING.value,
        nullable=False,
    )

    # Installment details (installment-type payments only)
    installment_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_installments: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    installment_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    remaining_balance_after: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Channel, fees and raw gateway response for audit (see GatewayMetadata)
    gateway_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        JSON,
        nullable=True,
    )

    # Set only on transition to success
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

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
        Index("ix_payments_student_course", "student_id", "course_id"),
        Index("ix_payments_status_paid_at", "status", "paid_at"),
    )

    def __repr__(self) -> str:
        return f"<PaymentRecord {self.reference} status={self.status}>"

    @property
    def payment_status(self) -> PaymentStatus:
        return PaymentStatus(self.status)

    @property
    def type(self) -> PaymentType:
        return PaymentType(self.payment_type)

    @property
    def is_terminal(self) -> bool:
        return self.payment_status.is_terminal
