"""
Payment Service - gateway payment lifecycle.

initialize -> pending record; verify / webhook -> apply_gateway_result,
which moves the record out of pending at most once and hands confirmed
payments to ReconciliationService.
"""

import uuid
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.exceptions import GatewayError, NotFoundError, PersistenceError, ValidationError
from app.fsm.machine import resolve_gateway_status
from app.fsm.states import PaymentStatus, PaymentType
from app.models.payment import PaymentRecord, utcnow
from app.repositories.payment_repository import PaymentRepository
from app.services.gateway import (
    GatewayAdapter,
    GatewayMetadata,
    from_minor_units,
    to_minor_units,
)
from app.services.paystack_service import PaystackService
from app.services.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


@dataclass
class PaymentInitialization:
    """Hosted checkout handed back to the client."""

    reference: str
    authorization_url: str
    access_code: str


@dataclass
class ReconciliationOutcome:
    """Result of applying a gateway status to a payment record."""

    payment: PaymentRecord
    applied: bool
    reconciliation_pending: bool = False


@dataclass
class PaymentVerification:
    """Normalized verification result."""

    reference: str
    status: str
    amount: Decimal
    currency: str
    channel: Optional[str]
    paid_at: Optional[datetime]
    reconciliation_pending: bool = False


def generate_reference() -> str:
    """Globally unique, never reused payment reference."""
    return f"{settings.payment_reference_prefix}_{uuid.uuid4().hex[:16]}"


class PaymentService:
    """Service for the gateway payment lifecycle."""

    def __init__(self, db: AsyncSession, gateway: Optional[GatewayAdapter] = None):
        self.db = db
        self.gateway = gateway if gateway is not None else PaystackService()
        self.payments = PaymentRepository(db)
        self.reconciliation = ReconciliationService(db)

    async def initialize_payment(
        self,
        student_id: str,
        course_id: str,
        amount: Decimal,
        email: str,
        payment_type: PaymentType = PaymentType.APPLICATION_FEE,
        callback_url: Optional[str] = None,
        currency: Optional[str] = None,
        installment_number: Optional[int] = None,
        total_installments: Optional[int] = None,
        installment_amount: Optional[Decimal] = None,
        remaining_balance_after: Optional[Decimal] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PaymentInitialization:
        """
        Open a hosted transaction and record it as pending.

        Nothing is persisted unless the gateway accepted the transaction.
        """
        amount = self._validate_amount(amount)
        payment_type = self._validate_type(payment_type)

        if not email or "@" not in email:
            raise ValidationError("A valid email is required")
        if not student_id or not course_id:
            raise ValidationError("Student and course are required")
        if installment_number is not None:
            if installment_number < 1:
                raise ValidationError("Installment number must be at least 1")
            if total_installments is not None and installment_number > total_installments:
                raise ValidationError(
                    f"Installment {installment_number} exceeds {total_installments} installments"
                )

        currency = currency or settings.default_currency
        reference = generate_reference()

        gateway_metadata = {
            **(metadata or {}),
            "student_id": student_id,
            "course_id": course_id,
            "payment_type": payment_type.value,
        }
        if installment_number is not None:
            gateway_metadata["installment_number"] = installment_number

        try:
            transaction = await self.gateway.initialize_transaction(
                amount_minor_units=to_minor_units(amount),
                email=email,
                reference=reference,
                callback_url=callback_url or settings.payment_callback_url,
                metadata=gateway_metadata,
                channels=settings.paystack_channels,
                currency=currency,
            )
        except GatewayError:
            logger.error(f"Payment initialization failed at gateway for {reference}")
            raise

        record = PaymentRecord(
            reference=reference,
            student_id=student_id,
            course_id=course_id,
            email=email,
            amount=amount,
            currency=currency,
            payment_type=payment_type.value,
            status=PaymentStatus.PENDING.value,
            installment_number=installment_number,
            total_installments=total_installments,
            installment_amount=installment_amount,
            remaining_balance_after=remaining_balance_after,
        )

        await self.payments.create(record)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to persist payment {reference} after gateway init: {e}")
            raise PersistenceError(f"Payment {reference} could not be saved") from e

        logger.info(
            f"Payment initialized {reference}: {amount} {currency} "
            f"({payment_type.value}) for student {student_id} on course {course_id}"
        )

        return PaymentInitialization(
            reference=reference,
            authorization_url=transaction.authorization_url,
            access_code=transaction.access_code,
        )

    async def verify_payment(self, reference: str) -> PaymentVerification:
        """
        Ask the gateway for the authoritative status and apply it.

        Safe to repeat: a resolved record is returned as is.
        """
        record = await self.payments.find_by_reference(reference)
        if not record:
            raise NotFoundError(f"Payment not found: {reference}")

        verification = await self.gateway.verify_transaction(record.reference)

        if verification.amount_minor_units and verification.amount != Decimal(record.amount):
            logger.warning(
                f"Gateway amount {verification.amount} differs from recorded "
                f"{record.amount} for {record.reference}",
                extra={"payment_reference": record.reference},
            )

        outcome = await self.apply_gateway_result(
            record.reference,
            verification.status,
            GatewayMetadata.from_verification(verification),
            gateway_reference=verification.gateway_id,
            paid_at=verification.paid_at,
        )
        payment = outcome.payment

        return PaymentVerification(
            reference=payment.reference,
            status=payment.status,
            amount=Decimal(payment.amount),
            currency=payment.currency,
            channel=verification.channel,
            paid_at=payment.paid_at,
            reconciliation_pending=outcome.reconciliation_pending,
        )

    async def handle_webhook(self, payload: Dict[str, Any]) -> Optional[ReconciliationOutcome]:
        """
        Apply a gateway-pushed charge event.

        Duplicate and late deliveries are no-ops. Returns None for events
        that are not about charges.
        """
        event = payload.get("event") or ""
        data = payload.get("data") or {}

        if not event.startswith("charge."):
            logger.info(f"Ignoring gateway event: {event}")
            return None

        reference = data.get("reference")
        if not reference:
            raise ValidationError("Webhook payload has no transaction reference")

        gateway_status = data.get("status")
        if not gateway_status and event == "charge.success":
            gateway_status = "success"
        if not gateway_status:
            raise ValidationError(f"Webhook payload for {reference} has no status")

        customer = data.get("customer") or {}
        metadata = GatewayMetadata(
            source="webhook",
            event=event,
            channel=data.get("channel"),
            currency=data.get("currency"),
            gateway_fees=data.get("fees"),
            gateway_response=data.get("gateway_response"),
            ip_address=data.get("ip_address"),
            raw={
                "amount": data.get("amount"),
                "customer_email": customer.get("email"),
            },
        )

        gateway_id = data.get("id")
        amount_minor_units = data.get("amount")
        if amount_minor_units is not None:
            logger.info(
                f"Webhook {event} for {reference}: {from_minor_units(int(amount_minor_units))}"
            )

        return await self.apply_gateway_result(
            reference,
            gateway_status,
            metadata,
            gateway_reference=str(gateway_id) if gateway_id is not None else None,
            paid_at=data.get("paid_at"),
        )

    async def apply_gateway_result(
        self,
        reference: str,
        gateway_status: str,
        metadata: GatewayMetadata,
        gateway_reference: Optional[str] = None,
        paid_at: Optional[Any] = None,
    ) -> ReconciliationOutcome:
        """
        Move a pending record to its terminal status, at most once.

        1. Find the record (reference, then gateway reference)
        2. Terminal already -> no-op
        3. Gateway still in flight -> no-op
        4. Conditional update on status == pending, committed
        5. Success -> ReconciliationService, once
        """
        record = await self.payments.find_by_reference(reference)
        if not record:
            raise NotFoundError(f"Payment not found: {reference}")

        reference = record.reference

        if record.is_terminal:
            logger.info(f"Payment {reference} already {record.status}, ignoring gateway status {gateway_status}")
            return ReconciliationOutcome(payment=record, applied=False)

        target = resolve_gateway_status(gateway_status)
        if target is None:
            logger.info(f"Payment {reference} still in flight at gateway ({gateway_status})")
            return ReconciliationOutcome(payment=record, applied=False)

        patch: Dict[str, Any] = {
            "status": target.value,
            "gateway_metadata": metadata.to_blob(),
        }
        if target == PaymentStatus.SUCCESS:
            patch["paid_at"] = self._parse_paid_at(paid_at)
        if gateway_reference and not record.gateway_reference:
            patch["gateway_reference"] = gateway_reference

        try:
            applied = await self.payments.conditional_update(reference, PaymentStatus.PENDING, patch)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                f"Could not record gateway status {target.value} for {reference}, "
                f"payment stays pending until the next verify: {e}",
                extra={"payment_reference": reference},
            )
            raise PersistenceError(f"Payment {reference} status could not be saved") from e

        record = await self.payments.find_by_reference(reference)

        if not applied:
            logger.info(f"Payment {reference} resolved concurrently as {record.status}")
            return ReconciliationOutcome(payment=record, applied=False)

        logger.info(f"Payment {reference} -> {target.value}")

        if target != PaymentStatus.SUCCESS:
            return ReconciliationOutcome(payment=record, applied=True)

        reconciled = await self.reconciliation.on_payment_confirmed(record)
        record = await self.payments.find_by_reference(reference)

        return ReconciliationOutcome(
            payment=record,
            applied=True,
            reconciliation_pending=not reconciled,
        )

    async def get_payment_by_reference(self, reference: str) -> PaymentRecord:
        record = await self.payments.find_by_reference(reference)
        if not record:
            raise NotFoundError(f"Payment not found: {reference}")
        return record

    async def list_payments_by_student(
        self,
        student_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> List[PaymentRecord]:
        return await self.payments.list_by_student(student_id, limit=limit, offset=offset)

    async def get_total_revenue(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Decimal:
        if start and end and start > end:
            raise ValidationError("Start date must be before end date")
        return await self.payments.sum_successful_amount(start, end)

    async def get_monthly_revenue(self, year: int) -> List[Dict[str, Any]]:
        """Revenue for each month of `year`, zero-filled."""
        if year < 2000 or year > 2100:
            raise ValidationError(f"Year out of range: {year}")

        by_month = await self.payments.monthly_revenue(year)
        return [
            {"month": month, "revenue": by_month.get(month, Decimal("0"))}
            for month in range(1, 13)
        ]

    async def get_payment_analytics(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Counts and totals per status and per payment type."""
        if start and end and start > end:
            raise ValidationError("Start date must be before end date")

        rows = await self.payments.status_breakdown(start, end)

        by_status: Dict[str, Dict[str, Any]] = {
            status.value: {"count": 0, "amount": Decimal("0")} for status in PaymentStatus
        }
        by_type: Dict[str, Dict[str, Any]] = {
            payment_type.value: {"count": 0, "revenue": Decimal("0")} for payment_type in PaymentType
        }

        for row in rows:
            status_bucket = by_status.setdefault(row["status"], {"count": 0, "amount": Decimal("0")})
            status_bucket["count"] += row["count"]
            status_bucket["amount"] += row["amount"]

            type_bucket = by_type.setdefault(row["payment_type"], {"count": 0, "revenue": Decimal("0")})
            type_bucket["count"] += row["count"]
            if row["status"] == PaymentStatus.SUCCESS.value:
                type_bucket["revenue"] += row["amount"]

        total_count = sum(bucket["count"] for bucket in by_status.values())
        success_count = by_status[PaymentStatus.SUCCESS.value]["count"]

        return {
            "total_payments": total_count,
            "total_revenue": by_status[PaymentStatus.SUCCESS.value]["amount"],
            "success_rate": (
                round(success_count / total_count * 100, 2) if total_count else 0.0
            ),
            "by_status": by_status,
            "by_type": by_type,
        }

    @staticmethod
    def _validate_amount(amount: Any) -> Decimal:
        try:
            value = Decimal(str(amount))
        except (InvalidOperation, ValueError):
            raise ValidationError(f"Invalid amount: {amount}")
        if not value.is_finite() or value <= 0:
            raise ValidationError("Amount must be greater than zero")
        if value != value.quantize(Decimal("0.01")):
            raise ValidationError("Amount cannot have more than two decimal places")
        return value

    @staticmethod
    def _validate_type(payment_type: Any) -> PaymentType:
        try:
            return PaymentType(payment_type)
        except ValueError:
            raise ValidationError(f"Unknown payment type: {payment_type}")

    @staticmethod
    def _parse_paid_at(paid_at: Any) -> datetime:
        if isinstance(paid_at, datetime):
            return paid_at
        if isinstance(paid_at, str) and paid_at:
            try:
                return datetime.fromisoformat(paid_at.replace("Z", "+00:00"))
            except ValueError:
                logger.warning(f"Unparseable gateway paid_at '{paid_at}', using now")
        return utcnow()
