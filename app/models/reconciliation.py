"""ReconciliationTask model - plan updates still owed for confirmed payments."""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.fsm.states import ReconciliationTaskStatus
from app.models.payment import utcnow


class ReconciliationTask(Base):
    """
    A gateway-confirmed payment whose installment plan update failed.

    Flow:
    1. Payment confirmed, plan update fails -> task created (status=pending)
    2. Re-drive worker retries the plan update -> status=resolved
    """

    __tablename__ = "reconciliation_tasks"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    payment_reference: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(16),
        default=ReconciliationTaskStatus.PENDING.value,
        nullable=False,
        index=True,
    )

    attempts: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    resolved_at: Mapped[Optional[datetime]] = mapped_column(
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

    def __repr__(self) -> str:
        return f"<ReconciliationTask {self.payment_reference} status={self.status} attempts={self.attempts}>"
