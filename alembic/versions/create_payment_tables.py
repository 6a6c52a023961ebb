"""Create payment, installment plan and reconciliation tables.

Revision ID: create_payment_tables
Revises:
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'create_payment_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'payments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('reference', sa.String(64), nullable=False),
        sa.Column('gateway_reference', sa.String(64), nullable=True, unique=True),
        sa.Column('student_id', sa.String(64), nullable=False),
        sa.Column('course_id', sa.String(64), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='GHS'),
        sa.Column('payment_type', sa.String(32), nullable=False, server_default='application_fee'),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('installment_number', sa.Integer(), nullable=True),
        sa.Column('total_installments', sa.Integer(), nullable=True),
        sa.Column('installment_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('remaining_balance_after', sa.Numeric(12, 2), nullable=True),
        sa.Column('gateway_metadata', sa.JSON(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_payments_reference', 'payments', ['reference'], unique=True)
    op.create_index('ix_payments_student_id', 'payments', ['student_id'])
    op.create_index('ix_payments_course_id', 'payments', ['course_id'])
    op.create_index('ix_payments_student_course', 'payments', ['student_id', 'course_id'])
    # Revenue reporting scans successful payments by paid_at
    op.create_index('ix_payments_status_paid_at', 'payments', ['status', 'paid_at'])

    op.create_table(
        'installment_plans',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('student_id', sa.String(64), nullable=False),
        sa.Column('course_id', sa.String(64), nullable=False),
        sa.Column('total_course_fee', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_installments', sa.Integer(), nullable=False),
        sa.Column('installment_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('paid_installments', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('remaining_balance', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='GHS'),
        sa.Column('application_fee_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('application_fee_reference', sa.String(64), nullable=True),
        sa.Column('next_due_date', sa.Date(), nullable=True),
        sa.Column('payment_plan', sa.String(16), nullable=False, server_default='monthly'),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('student_id', 'course_id', name='uq_installment_plans_student_course'),
    )
    op.create_index('ix_installment_plans_student_id', 'installment_plans', ['student_id'])
    op.create_index('ix_installment_plans_course_id', 'installment_plans', ['course_id'])
    op.create_index('ix_installment_plans_next_due_date', 'installment_plans', ['next_due_date'])
    op.create_index('ix_installment_plans_status', 'installment_plans', ['status'])

    op.create_table(
        'installment_schedule_entries',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('plan_id', sa.Uuid(),
                  sa.ForeignKey('installment_plans.id', ondelete='CASCADE'),
                  nullable=False),
        sa.Column('installment_number', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('due_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('paid_date', sa.Date(), nullable=True),
        sa.Column('payment_reference', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('plan_id', 'installment_number', name='uq_schedule_plan_number'),
    )
    op.create_index('ix_installment_schedule_entries_plan_id', 'installment_schedule_entries', ['plan_id'])
    op.create_index('ix_installment_schedule_entries_due_date', 'installment_schedule_entries', ['due_date'])

    op.create_table(
        'reconciliation_tasks',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('payment_reference', sa.String(64), nullable=False, unique=True),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True),
                  server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_reconciliation_tasks_status', 'reconciliation_tasks', ['status'])


def downgrade() -> None:
    op.drop_index('ix_reconciliation_tasks_status', table_name='reconciliation_tasks')
    op.drop_table('reconciliation_tasks')

    op.drop_index('ix_installment_schedule_entries_due_date', table_name='installment_schedule_entries')
    op.drop_index('ix_installment_schedule_entries_plan_id', table_name='installment_schedule_entries')
    op.drop_table('installment_schedule_entries')

    op.drop_index('ix_installment_plans_status', table_name='installment_plans')
    op.drop_index('ix_installment_plans_next_due_date', table_name='installment_plans')
    op.drop_index('ix_installment_plans_course_id', table_name='installment_plans')
    op.drop_index('ix_installment_plans_student_id', table_name='installment_plans')
    op.drop_table('installment_plans')

    op.drop_index('ix_payments_status_paid_at', table_name='payments')
    op.drop_index('ix_payments_student_course', table_name='payments')
    op.drop_index('ix_payments_course_id', table_name='payments')
    op.drop_index('ix_payments_student_id', table_name='payments')
    op.drop_index('ix_payments_reference', table_name='payments')
    op.drop_table('payments')
