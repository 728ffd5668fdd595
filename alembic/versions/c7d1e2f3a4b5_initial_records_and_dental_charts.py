"""initial_records_and_dental_charts

Revision ID: c7d1e2f3a4b5
Revises:
Create Date: 2026-10-12 09:14:03.482210

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'c7d1e2f3a4b5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


TOOTH_CONDITIONS = (
    'SOUND', 'ABSENT', 'EXTRACTION_INDICATED', 'CARIES', 'FILLED', 'ROOT_CANAL',
    'CROWN', 'IMPLANT', 'FIXED_PROSTHESIS', 'REMOVABLE_PROSTHESIS', 'FRACTURE', 'MOBILITY',
)
TOOTH_SURFACES = ('OCCLUSAL_INCISAL', 'MESIAL', 'DISTAL', 'VESTIBULAR_BUCAL', 'PALATINO_LINGUAL')


def upgrade() -> None:
    # 1. Tablas base
    op.create_table('clinics',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('branch_name', sa.String(length=100), nullable=True, comment='Nombre de la sede/sucursal (ej: Sede Lima Norte)'),
        sa.Column('ruc', sa.String(length=11), nullable=False),
        sa.Column('specialty_type', sa.String(length=100), nullable=True, comment='general, dental, etc.'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_clinics_ruc'), 'clinics', ['ruc'], unique=False)

    op.create_table('users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('clinic_id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('role', sa.Enum('SUPER_ADMIN', 'CLINIC_ADMIN', 'DOCTOR', 'RECEPTIONIST', name='userrole'), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('cop_number', sa.String(length=20), nullable=True, comment='Número de colegiatura odontológica (COP)'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_clinic_id'), 'users', ['clinic_id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)

    op.create_table('patients',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('clinic_id', sa.UUID(), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=False),
        sa.Column('last_name', sa.String(length=100), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_patients_clinic_id'), 'patients', ['clinic_id'], unique=False)

    op.create_table('appointments',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('clinic_id', sa.UUID(), nullable=False),
        sa.Column('patient_id', sa.UUID(), nullable=False),
        sa.Column('doctor_id', sa.UUID(), nullable=False),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.Enum('SCHEDULED', 'CONFIRMED', 'IN_PROGRESS', 'COMPLETED', 'NO_SHOW', 'CANCELLED', name='appointmentstatus'), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id']),
        sa.ForeignKeyConstraint(['doctor_id'], ['users.id']),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_appointment_patient', 'appointments', ['patient_id', 'start_time'], unique=False)

    op.create_table('audit_log',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('clinic_id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=True),
        sa.Column('entity', sa.String(length=50), nullable=False, comment='Nombre de la entidad: clinical_record, dental_chart'),
        sa.Column('entity_id', sa.String(length=36), nullable=False, comment='UUID del registro afectado'),
        sa.Column('action', sa.String(length=20), nullable=False, comment='open, close, draft, consolidate, discard'),
        sa.Column('old_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Snapshot del registro antes del cambio'),
        sa.Column('new_data', postgresql.JSONB(astext_type=sa.Text()), nullable=True, comment='Snapshot del registro después del cambio'),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_log_action'), 'audit_log', ['action'], unique=False)
    op.create_index(op.f('ix_audit_log_clinic_id'), 'audit_log', ['clinic_id'], unique=False)
    op.create_index(op.f('ix_audit_log_entity'), 'audit_log', ['entity'], unique=False)
    op.create_index(op.f('ix_audit_log_user_id'), 'audit_log', ['user_id'], unique=False)

    # 2. Historia clínica
    op.create_table('clinical_records',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('clinic_id', sa.UUID(), nullable=False),
        sa.Column('patient_id', sa.UUID(), nullable=False),
        sa.Column('appointment_id', sa.UUID(), nullable=True, comment='Cita desde la que se abrió la historia (referencia débil)'),
        sa.Column('opened_by', sa.UUID(), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=True, comment='Motivo de consulta'),
        sa.Column('status', sa.Enum('OPEN', 'CLOSED', name='recordstatus'), nullable=False),
        sa.Column('closure_reason', sa.String(length=500), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True, comment='Timestamp de cierre. Una vez cerrada, la historia es INMUTABLE'),
        sa.Column('closed_by', sa.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id']),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id']),
        sa.ForeignKeyConstraint(['closed_by'], ['users.id']),
        sa.ForeignKeyConstraint(['opened_by'], ['users.id']),
        sa.ForeignKeyConstraint(['patient_id'], ['patients.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_clinical_record_patient', 'clinical_records', ['clinic_id', 'patient_id'], unique=False)
    op.create_index('idx_clinical_record_appointment', 'clinical_records', ['appointment_id'], unique=False)

    # 3. Odontograma versionado
    op.create_table('dental_charts',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('clinic_id', sa.UUID(), nullable=False),
        sa.Column('record_id', sa.UUID(), nullable=False),
        sa.Column('appointment_id', sa.UUID(), nullable=True, comment='Cita para la que se abrió el borrador (opcional)'),
        sa.Column('based_on_id', sa.UUID(), nullable=True, comment='Versión consolidada usada como base (null = borrador vacío)'),
        sa.Column('is_draft', sa.Boolean(), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('version_token', sa.String(length=64), nullable=False, comment='Token opaco; cambia con cada mutación aceptada'),
        sa.Column('created_by', sa.UUID(), nullable=False),
        sa.Column('updated_by', sa.UUID(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id']),
        sa.ForeignKeyConstraint(['based_on_id'], ['dental_charts.id']),
        sa.ForeignKeyConstraint(['clinic_id'], ['clinics.id']),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.ForeignKeyConstraint(['record_id'], ['clinical_records.id']),
        sa.ForeignKeyConstraint(['updated_by'], ['users.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_dental_chart_record_version', 'dental_charts', ['record_id', 'version'], unique=False)
    op.create_index(
        'uq_dental_chart_record_draft', 'dental_charts', ['record_id'],
        unique=True, postgresql_where=sa.text('is_draft'),
    )

    op.create_table('tooth_states',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('chart_id', sa.UUID(), nullable=False),
        sa.Column('fdi_number', sa.SmallInteger(), nullable=False, comment='Número FDI: 11-18, 21-28, 31-38, 41-48 (adulto) / 51-55, 61-65, 71-75, 81-85 (deciduo)'),
        sa.Column('is_present', sa.Boolean(), nullable=False),
        sa.Column('condition', sa.Enum(*TOOTH_CONDITIONS, name='toothcondition'), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['chart_id'], ['dental_charts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('chart_id', 'fdi_number', name='uq_tooth_state_chart_fdi')
    )

    op.create_table('surface_findings',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('tooth_id', sa.UUID(), nullable=False),
        sa.Column('surface', sa.Enum(*TOOTH_SURFACES, name='toothsurface'), nullable=False),
        sa.Column('finding', postgresql.ENUM(*TOOTH_CONDITIONS, name='toothcondition', create_type=False), nullable=True),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('suggested_treatment', sa.String(length=100), nullable=True, comment='Código del tratamiento sugerido'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['tooth_id'], ['tooth_states.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_surface_finding_tooth', 'surface_findings', ['tooth_id', 'surface'], unique=False)

    op.create_table('dental_chart_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('chart_id', sa.UUID(), nullable=False),
        sa.Column('record_id', sa.UUID(), nullable=False),
        sa.Column('fdi_number', sa.SmallInteger(), nullable=True),
        sa.Column('event_type', sa.Enum('TOOTH_STATE', 'SURFACE_FINDING', 'CONSOLIDATED', name='charteventtype'), nullable=False),
        sa.Column('payload', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_by', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.ForeignKeyConstraint(['chart_id'], ['dental_charts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.ForeignKeyConstraint(['record_id'], ['clinical_records.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_dental_chart_event_chart', 'dental_chart_events', ['chart_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_dental_chart_event_chart', table_name='dental_chart_events')
    op.drop_table('dental_chart_events')
    op.drop_index('idx_surface_finding_tooth', table_name='surface_findings')
    op.drop_table('surface_findings')
    op.drop_table('tooth_states')
    op.drop_index('uq_dental_chart_record_draft', table_name='dental_charts')
    op.drop_index('idx_dental_chart_record_version', table_name='dental_charts')
    op.drop_table('dental_charts')
    op.drop_index('idx_clinical_record_appointment', table_name='clinical_records')
    op.drop_index('idx_clinical_record_patient', table_name='clinical_records')
    op.drop_table('clinical_records')
    op.drop_index(op.f('ix_audit_log_user_id'), table_name='audit_log')
    op.drop_index(op.f('ix_audit_log_entity'), table_name='audit_log')
    op.drop_index(op.f('ix_audit_log_clinic_id'), table_name='audit_log')
    op.drop_index(op.f('ix_audit_log_action'), table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_index('idx_appointment_patient', table_name='appointments')
    op.drop_table('appointments')
    op.drop_index(op.f('ix_patients_clinic_id'), table_name='patients')
    op.drop_table('patients')
    op.drop_index(op.f('ix_users_email'), table_name='users')
    op.drop_index(op.f('ix_users_clinic_id'), table_name='users')
    op.drop_table('users')
    op.drop_index(op.f('ix_clinics_ruc'), table_name='clinics')
    op.drop_table('clinics')

    for enum_name in (
        'charteventtype', 'toothsurface', 'toothcondition',
        'recordstatus', 'appointmentstatus', 'userrole',
    ):
        op.execute(f"DROP TYPE IF EXISTS {enum_name}")
