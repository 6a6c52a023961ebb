"""
Tests for the status machine.
"""

from datetime import date

import pytest
from app.exceptions import ConflictError
from app.fsm.machine import (
    can_transition_installment,
    can_transition_payment,
    can_transition_plan,
    ensure_installment_transition,
    ensure_plan_transition,
    resolve_gateway_status,
)
from app.fsm.states import (
    InstallmentStatus,
    PaymentPlan,
    PaymentStatus,
    PaymentType,
    PlanStatus,
)


class TestPaymentStatus:
    """Tests for PaymentStatus transitions."""

    def test_pending_moves_to_each_terminal_status(self):
        for target in (PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            assert can_transition_payment(PaymentStatus.PENDING, target)

    def test_terminal_statuses_never_move(self):
        for current in (PaymentStatus.SUCCESS, PaymentStatus.FAILED, PaymentStatus.CANCELLED):
            assert current.is_terminal
            for target in PaymentStatus:
                assert not can_transition_payment(current, target)

    def test_pending_is_not_terminal(self):
        assert not PaymentStatus.PENDING.is_terminal


class TestPaymentType:
    """Tests for PaymentType."""

    def test_only_course_fee_and_installment_reduce_balance(self):
        assert PaymentType.COURSE_FEE.reduces_balance
        assert PaymentType.INSTALLMENT.reduces_balance
        assert not PaymentType.APPLICATION_FEE.reduces_balance


class TestPlanStatus:
    """Tests for PlanStatus transitions."""

    def test_active_plan_can_complete(self):
        assert can_transition_plan(PlanStatus.ACTIVE, PlanStatus.COMPLETED)

    def test_defaulted_plan_can_recover(self):
        assert can_transition_plan(PlanStatus.DEFAULTED, PlanStatus.ACTIVE)

    def test_cancelled_plan_cannot_be_reactivated(self):
        with pytest.raises(ConflictError):
            ensure_plan_transition(PlanStatus.CANCELLED, PlanStatus.ACTIVE)

    def test_completed_plan_cannot_be_cancelled(self):
        with pytest.raises(ConflictError):
            ensure_plan_transition(PlanStatus.COMPLETED, PlanStatus.CANCELLED)


class TestInstallmentStatus:
    """Tests for schedule entry transitions."""

    def test_overdue_entry_can_be_paid(self):
        assert can_transition_installment(InstallmentStatus.OVERDUE, InstallmentStatus.PAID)

    def test_paid_entry_is_final(self):
        with pytest.raises(ConflictError):
            ensure_installment_transition(InstallmentStatus.PAID, InstallmentStatus.CANCELLED)


class TestGatewayStatus:
    """Tests for mapping raw gateway statuses."""

    def test_success(self):
        assert resolve_gateway_status("success") == PaymentStatus.SUCCESS
        assert resolve_gateway_status(" SUCCESS ") == PaymentStatus.SUCCESS

    @pytest.mark.parametrize("status", ["pending", "ongoing", "processing", "send_otp"])
    def test_in_flight_statuses_resolve_to_nothing(self, status):
        assert resolve_gateway_status(status) is None

    @pytest.mark.parametrize("status", ["failed", "abandoned", "reversed", "something_new", None])
    def test_everything_else_fails(self, status):
        assert resolve_gateway_status(status) == PaymentStatus.FAILED


class TestPaymentPlan:
    """Tests for cadence due dates."""

    def test_monthly(self):
        start = date(2024, 1, 15)
        assert PaymentPlan.MONTHLY.due_date(start, 0) == date(2024, 1, 15)
        assert PaymentPlan.MONTHLY.due_date(start, 2) == date(2024, 3, 15)

    def test_monthly_clamps_to_month_end(self):
        assert PaymentPlan.MONTHLY.due_date(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_weekly(self):
        assert PaymentPlan.WEEKLY.due_date(date(2024, 1, 1), 3) == date(2024, 1, 22)

    def test_quarterly(self):
        assert PaymentPlan.QUARTERLY.due_date(date(2024, 1, 15), 1) == date(2024, 4, 15)
