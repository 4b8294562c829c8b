"""Baseline migration - clinics, scheduling and follow-up automation.

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-17

Creates:
- clinics, clinic_settings
- professionals, patients, leads
- appointments (positive-duration check)
- follow_up_rules, follow_up_executions (due-row partial index on PostgreSQL)
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps(*, updated: bool = False) -> list[sa.Column]:
    columns = [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
        )
    return columns


def upgrade() -> None:
    # ==========================================================================
    # Tenants
    # ==========================================================================
    op.create_table(
        'clinics',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )

    op.create_table(
        'clinic_settings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('whatsapp_token', sa.Text(), nullable=True),
        sa.Column('whatsapp_phone_number_id', sa.String(64), nullable=True),
        sa.Column('instagram_access_token', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id'),
    )

    # ==========================================================================
    # Clinical records
    # ==========================================================================
    op.create_table(
        'professionals',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('specialty', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_professionals_clinic', 'professionals', ['clinic_id'])

    op.create_table(
        'patients',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('birth_date', sa.Date(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_patients_clinic', 'patients', ['clinic_id'])

    op.create_table(
        'leads',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('source', sa.String(30), server_default=sa.text("'OMNICHANNEL'"), nullable=False),
        sa.Column('status', sa.String(30), server_default=sa.text("'NEW'"), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_leads_clinic_status', 'leads', ['clinic_id', 'status'])

    # ==========================================================================
    # Appointments
    # ==========================================================================
    op.create_table(
        'appointments',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('professional_id', sa.Uuid(), nullable=False),
        sa.Column('patient_id', sa.Uuid(), nullable=False),
        sa.Column('title', sa.String(255), server_default=sa.text("'Consulta'"), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'SCHEDULED'"), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(updated=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['professional_id'], ['professionals.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('end_time > start_time', name='ck_appointment_positive_duration'),
    )
    op.create_index(
        'idx_appointments_professional_time',
        'appointments',
        ['professional_id', 'start_time', 'end_time'],
    )
    op.create_index('idx_appointments_clinic_time', 'appointments', ['clinic_id', 'start_time'])

    # ==========================================================================
    # Follow-up automation
    # ==========================================================================
    op.create_table(
        'follow_up_rules',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('trigger', sa.String(40), nullable=False),
        sa.Column('target_type', sa.String(20), nullable=False),
        sa.Column('delay_days', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('message_template', sa.Text(), nullable=False),
        sa.Column('active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamps(updated=True),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('delay_days BETWEEN -365 AND 365', name='ck_follow_up_delay_range'),
    )
    op.create_index(
        'idx_follow_up_rules_match',
        'follow_up_rules',
        ['clinic_id', 'trigger', 'target_type', 'active'],
    )

    op.create_table(
        'follow_up_executions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('clinic_id', sa.Uuid(), nullable=False),
        sa.Column('rule_id', sa.Uuid(), nullable=False),
        sa.Column('target_id', sa.Uuid(), nullable=False),
        sa.Column('target_type', sa.String(20), nullable=False),
        sa.Column('scheduled_for', sa.DateTime(timezone=True), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('status', sa.String(20), server_default=sa.text("'PENDING'"), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('claim_token', sa.Uuid(), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('executed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['rule_id'], ['follow_up_rules.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'idx_follow_up_executions_due',
        'follow_up_executions',
        ['status', 'scheduled_for'],
        postgresql_where=sa.text("status = 'PENDING'"),
    )
    op.create_index(
        'idx_follow_up_executions_rule_status',
        'follow_up_executions',
        ['rule_id', 'status'],
    )
    op.create_index(
        'idx_follow_up_executions_clinic',
        'follow_up_executions',
        ['clinic_id', 'scheduled_for'],
    )


def downgrade() -> None:
    op.drop_table('follow_up_executions')
    op.drop_table('follow_up_rules')
    op.drop_table('appointments')
    op.drop_table('leads')
    op.drop_table('patients')
    op.drop_table('professionals')
    op.drop_table('clinic_settings')
    op.drop_table('clinics')
