"""
Tests for PaymentService.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from app.exceptions import GatewayError, NotFoundError, ValidationError
from app.fsm.states import InstallmentStatus, PaymentPlan, PaymentStatus, PaymentType, PlanStatus
from app.models.payment import PaymentRecord
from app.repositories.payment_repository import PaymentRepository
from app.services.gateway import GatewayMetadata
from app.services.installment_service import InstallmentService
from app.services.payment_service import PaymentService
from app.services.reconciliation_service import ReconciliationService


async def initialize(service, amount="334", payment_type=PaymentType.INSTALLMENT, **kwargs):
    values = {
        "student_id": "stu-1",
        "course_id": "course-1",
        "email": "ama@example.com",
    }
    values.update(kwargs)
    result = await service.initialize_payment(
        amount=Decimal(amount),
        payment_type=payment_type,
        **values,
    )
    return result.reference


async def create_plan(db, total="1000", installments=3):
    plan = await InstallmentService(db).create_plan(
        student_id="stu-1",
        course_id="course-1",
        total_course_fee=Decimal(total),
        total_installments=installments,
        payment_plan=PaymentPlan.MONTHLY,
        start_date=date(2024, 1, 15),
    )
    await db.commit()
    return plan


def charge_event(reference, event="charge.success", status="success"):
    return {
        "event": event,
        "data": {
            "id": 302961,
            "reference": reference,
            "status": status,
            "amount": 33400,
            "currency": "GHS",
            "channel": "mobile_money",
            "fees": 650,
            "gateway_response": "Approved",
            "paid_at": "2026-03-10T12:00:00.000Z",
            "customer": {"email": "ama@example.com"},
        },
    }


@pytest.mark.asyncio
async def test_initialize_payment_records_pending(db, gateway):
    """Test initialization stores a pending record with a fresh reference."""
    service = PaymentService(db, gateway=gateway)

    result = await service.initialize_payment(
        student_id="stu-1",
        course_id="course-1",
        amount=Decimal("150.50"),
        email="ama@example.com",
        payment_type=PaymentType.APPLICATION_FEE,
    )

    assert result.reference.startswith("KM_MEDIA_")
    assert len(result.reference) == len("KM_MEDIA_") + 16
    assert result.authorization_url.endswith(result.reference)

    kwargs = gateway.initialize_transaction.call_args.kwargs
    assert kwargs["amount_minor_units"] == 15050
    assert kwargs["currency"] == "GHS"
    assert "mobile_money" in kwargs["channels"]
    assert kwargs["metadata"]["student_id"] == "stu-1"

    record = await service.get_payment_by_reference(result.reference)
    assert record.status == PaymentStatus.PENDING.value
    assert record.amount == Decimal("150.50")
    assert record.paid_at is None


@pytest.mark.asyncio
async def test_references_are_unique(db, gateway):
    service = PaymentService(db, gateway=gateway)
    first = await initialize(service)
    second = await initialize(service)
    assert first != second


@pytest.mark.asyncio
async def test_gateway_failure_creates_no_record(db, gateway):
    """Test nothing is persisted when the gateway rejects initialization."""
    gateway.initialize_transaction.side_effect = GatewayError("Payment gateway timed out")
    service = PaymentService(db, gateway=gateway)

    with pytest.raises(GatewayError):
        await initialize(service)

    count = (await db.execute(select(func.count(PaymentRecord.id)))).scalar()
    assert count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("amount", ["0", "-5", "10.005"])
async def test_invalid_amount_rejected(db, gateway, amount):
    service = PaymentService(db, gateway=gateway)

    with pytest.raises(ValidationError):
        await initialize(service, amount=amount)

    gateway.initialize_transaction.assert_not_called()


@pytest.mark.asyncio
async def test_invalid_email_rejected(db, gateway):
    service = PaymentService(db, gateway=gateway)

    with pytest.raises(ValidationError):
        await initialize(service, email="not-an-email")


@pytest.mark.asyncio
async def test_verify_unknown_reference(db, gateway):
    with pytest.raises(NotFoundError):
        await PaymentService(db, gateway=gateway).verify_payment("KM_MEDIA_missing")


@pytest.mark.asyncio
async def test_verify_success_updates_plan(db, gateway):
    """Test a verified installment payment is credited to its plan."""
    plan = await create_plan(db)
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service, installment_number=1, total_installments=3)

    result = await service.verify_payment(reference)

    assert result.status == PaymentStatus.SUCCESS.value
    assert result.channel == "mobile_money"
    assert result.reconciliation_pending is False
    assert result.paid_at is not None

    record = await service.get_payment_by_reference(reference)
    assert record.gateway_reference == f"gw-{reference}"
    assert record.gateway_metadata["source"] == "verify"
    assert record.gateway_metadata["gateway_fees"] == 975

    updated = await InstallmentService(db).get_plan_by_id(plan.id)
    assert updated.remaining_balance == Decimal("666")
    assert updated.paid_installments == 1
    assert updated.next_due_date == date(2024, 2, 15)
    assert updated.version == 2

    entries = await InstallmentService(db).list_installments(plan.id)
    assert entries[0].status == InstallmentStatus.PAID.value
    assert entries[0].payment_reference == reference


@pytest.mark.asyncio
async def test_verify_twice_applies_once(db, gateway):
    """Test a second verify of a resolved payment changes nothing."""
    plan = await create_plan(db)
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service)

    await service.verify_payment(reference)
    first = await service.get_payment_by_reference(reference)
    first_updated_at = first.updated_at

    with patch.object(ReconciliationService, "on_payment_confirmed", AsyncMock()) as coordinator:
        again = await service.verify_payment(reference)

    coordinator.assert_not_called()

    assert again.status == PaymentStatus.SUCCESS.value
    record = await service.get_payment_by_reference(reference)
    assert record.updated_at == first_updated_at

    updated = await InstallmentService(db).get_plan_by_id(plan.id)
    assert updated.remaining_balance == Decimal("666")
    assert updated.paid_installments == 1


@pytest.mark.asyncio
async def test_gateway_still_pending_leaves_record_pending(db, gateway, verification):
    gateway.verify_transaction.side_effect = lambda ref: verification(ref, status="ongoing")
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service)

    result = await service.verify_payment(reference)

    assert result.status == PaymentStatus.PENDING.value


@pytest.mark.asyncio
async def test_failed_payment_leaves_plan_untouched(db, gateway, verification):
    plan = await create_plan(db)
    gateway.verify_transaction.side_effect = lambda ref: verification(ref, status="abandoned")
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service)

    result = await service.verify_payment(reference)

    assert result.status == PaymentStatus.FAILED.value
    assert result.paid_at is None

    updated = await InstallmentService(db).get_plan_by_id(plan.id)
    assert updated.remaining_balance == Decimal("1000")
    assert updated.version == 1


@pytest.mark.asyncio
async def test_balance_matches_confirmed_payments(db, gateway):
    """Test remaining balance plus confirmed payments equals the course fee."""
    plan = await create_plan(db)
    service = PaymentService(db, gateway=gateway)

    paid = Decimal("0")
    for number, amount in enumerate(["334", "334", "332"], start=1):
        reference = await initialize(
            service, amount=amount, installment_number=number, total_installments=3
        )
        await service.verify_payment(reference)
        paid += Decimal(amount)

        current = await InstallmentService(db).get_plan_by_id(plan.id)
        assert current.remaining_balance + paid == Decimal("1000")

    assert current.status == PlanStatus.COMPLETED.value
    assert current.paid_installments == 3
    entries = await InstallmentService(db).list_installments(plan.id)
    assert all(e.status == InstallmentStatus.PAID.value for e in entries)


@pytest.mark.asyncio
async def test_overpayment_clamps_balance(db, gateway):
    plan = await create_plan(db, total="300", installments=1)
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service, amount="350", payment_type=PaymentType.COURSE_FEE)

    await service.verify_payment(reference)

    updated = await InstallmentService(db).get_plan_by_id(plan.id)
    assert updated.remaining_balance == Decimal("0")
    assert updated.status == PlanStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_application_fee_sets_plan_flag(db, gateway):
    plan = await create_plan(db)
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service, amount="50", payment_type=PaymentType.APPLICATION_FEE)

    await service.verify_payment(reference)

    updated = await InstallmentService(db).get_plan_by_id(plan.id)
    assert updated.application_fee_paid is True
    assert updated.application_fee_reference == reference
    assert updated.remaining_balance == Decimal("1000")


@pytest.mark.asyncio
async def test_application_fee_before_plan_is_carried_onto_plan(db, gateway):
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service, amount="50", payment_type=PaymentType.APPLICATION_FEE)

    result = await service.verify_payment(reference)
    assert result.reconciliation_pending is False

    plan = await create_plan(db)
    assert plan.application_fee_paid is True
    assert plan.application_fee_reference == reference


@pytest.mark.asyncio
async def test_webhook_success(db, gateway):
    await create_plan(db)
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service)

    outcome = await service.handle_webhook(charge_event(reference))

    assert outcome.applied is True
    assert outcome.payment.status == PaymentStatus.SUCCESS.value
    assert outcome.payment.paid_at is not None
    assert outcome.payment.gateway_reference == "302961"
    assert outcome.payment.gateway_metadata["source"] == "webhook"
    assert outcome.payment.gateway_metadata["event"] == "charge.success"
    gateway.verify_transaction.assert_not_called()


@pytest.mark.asyncio
async def test_duplicate_webhook_is_a_no_op(db, gateway):
    """Test a replayed webhook leaves the record and plan untouched."""
    plan = await create_plan(db)
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service)

    await service.handle_webhook(charge_event(reference))
    first = await service.get_payment_by_reference(reference)
    first_updated_at = first.updated_at

    outcome = await service.handle_webhook(charge_event(reference))

    assert outcome.applied is False
    record = await service.get_payment_by_reference(reference)
    assert record.updated_at == first_updated_at

    updated = await InstallmentService(db).get_plan_by_id(plan.id)
    assert updated.remaining_balance == Decimal("666")


@pytest.mark.asyncio
async def test_late_failure_webhook_cannot_undo_success(db, gateway):
    await create_plan(db)
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service)
    await service.verify_payment(reference)

    outcome = await service.handle_webhook(
        charge_event(reference, event="charge.failed", status="failed")
    )

    assert outcome.applied is False
    assert outcome.payment.status == PaymentStatus.SUCCESS.value


@pytest.mark.asyncio
async def test_verify_losing_race_to_webhook_applies_nothing(db, gateway):
    """Test a verify that loses the status update to a webhook credits the plan once."""
    plan = await create_plan(db)
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service)

    real_update = PaymentRepository.conditional_update
    outcomes = []

    async def webhook_lands_first(self, ref, expected_status, patch_values):
        if not outcomes:
            outcomes.append(
                await PaymentService(db, gateway=gateway).handle_webhook(charge_event(ref))
            )
        return await real_update(self, ref, expected_status, patch_values)

    with patch.object(PaymentRepository, "conditional_update", webhook_lands_first):
        outcome = await service.apply_gateway_result(
            reference, "success", GatewayMetadata(source="verify")
        )

    assert outcomes[0].applied is True
    assert outcome.applied is False
    assert outcome.payment.status == PaymentStatus.SUCCESS.value
    assert outcome.payment.gateway_metadata["source"] == "webhook"

    updated = await InstallmentService(db).get_plan_by_id(plan.id)
    assert updated.remaining_balance == Decimal("666")
    assert updated.paid_installments == 1


@pytest.mark.asyncio
async def test_caller_metadata_cannot_override_payment_fields(db, gateway):
    service = PaymentService(db, gateway=gateway)

    await initialize(service, metadata={"student_id": "stu-other", "note": "scholarship"})

    sent = gateway.initialize_transaction.call_args.kwargs["metadata"]
    assert sent["student_id"] == "stu-1"
    assert sent["course_id"] == "course-1"
    assert sent["payment_type"] == PaymentType.INSTALLMENT.value
    assert sent["note"] == "scholarship"


@pytest.mark.asyncio
async def test_webhook_ignores_non_charge_events(db, gateway):
    service = PaymentService(db, gateway=gateway)
    assert await service.handle_webhook({"event": "transfer.success", "data": {}}) is None


@pytest.mark.asyncio
async def test_webhook_without_reference_rejected(db, gateway):
    service = PaymentService(db, gateway=gateway)
    with pytest.raises(ValidationError):
        await service.handle_webhook({"event": "charge.success", "data": {}})


@pytest.mark.asyncio
async def test_lookup_by_gateway_reference(db, gateway):
    service = PaymentService(db, gateway=gateway)
    reference = await initialize(service, payment_type=PaymentType.APPLICATION_FEE)
    await service.verify_payment(reference)

    record = await service.get_payment_by_reference(f"gw-{reference}")
    assert record.reference == reference


@pytest.mark.asyncio
async def test_list_payments_by_student(db, gateway):
    service = PaymentService(db, gateway=gateway)
    await initialize(service)
    await initialize(service)
    await initialize(service, student_id="stu-2")

    payments = await service.list_payments_by_student("stu-1")
    assert len(payments) == 2
    assert all(p.student_id == "stu-1" for p in payments)


@pytest.mark.asyncio
async def test_revenue_and_analytics(db, gateway, verification):
    """Test revenue counts successful payments only."""
    service = PaymentService(db, gateway=gateway)

    paid = await initialize(service, amount="200", payment_type=PaymentType.APPLICATION_FEE)
    await service.verify_payment(paid)

    gateway.verify_transaction.side_effect = lambda ref: verification(ref, status="failed")
    failed = await initialize(service, amount="80", payment_type=PaymentType.APPLICATION_FEE)
    await service.verify_payment(failed)

    await initialize(service, amount="40", payment_type=PaymentType.APPLICATION_FEE)

    assert await service.get_total_revenue() == Decimal("200")
    assert await service.get_total_revenue(
        start=datetime(2026, 4, 1, tzinfo=timezone.utc)
    ) == Decimal("0")

    months = await service.get_monthly_revenue(2026)
    assert len(months) == 12
    assert months[2] == {"month": 3, "revenue": Decimal("200")}
    assert months[0]["revenue"] == Decimal("0")

    analytics = await service.get_payment_analytics()
    assert analytics["total_payments"] == 3
    assert analytics["total_revenue"] == Decimal("200")
    assert analytics["by_status"]["failed"]["count"] == 1
    assert analytics["by_status"]["pending"]["count"] == 1
    assert analytics["by_type"]["application_fee"]["revenue"] == Decimal("200")
    assert analytics["success_rate"] == pytest.approx(33.33)


@pytest.mark.asyncio
async def test_revenue_rejects_inverted_range(db, gateway):
    service = PaymentService(db, gateway=gateway)
    with pytest.raises(ValidationError):
        await service.get_total_revenue(
            start=datetime(2026, 5, 1, tzinfo=timezone.utc),
            end=datetime(2026, 4, 1, tzinfo=timezone.utc),
        )
