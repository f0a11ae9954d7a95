"""access control tables

Revision ID: access_control_001
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = 'access_control_001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('role', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('hospital_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_users_id'), 'users', ['id'], unique=False)
    op.create_index(op.f('ix_users_email'), 'users', ['email'], unique=True)
    op.create_index(op.f('ix_users_hospital_id'), 'users', ['hospital_id'], unique=False)

    op.create_table(
        'hospitals',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('admin_user_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_hospitals_id'), 'hospitals', ['id'], unique=False)
    op.create_index(op.f('ix_hospitals_name'), 'hospitals', ['name'], unique=False)
    op.create_index(op.f('ix_hospitals_admin_user_id'), 'hospitals', ['admin_user_id'], unique=False)

    op.create_table(
        'access_requests',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('doctor_id', sa.String(), nullable=False),
        sa.Column('hospital_id', sa.String(), nullable=False),
        sa.Column('request_type', sa.String(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('requested_data', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('denied_at', sa.DateTime(), nullable=True),
        sa.Column('patient_response', sa.String(), nullable=True),
        sa.Column('patient_response_at', sa.DateTime(), nullable=True),
        sa.Column('patient_response_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_access_requests_patient_id'), 'access_requests', ['patient_id'], unique=False)
    op.create_index(op.f('ix_access_requests_doctor_id'), 'access_requests', ['doctor_id'], unique=False)
    op.create_index(op.f('ix_access_requests_hospital_id'), 'access_requests', ['hospital_id'], unique=False)
    op.create_index(op.f('ix_access_requests_status'), 'access_requests', ['status'], unique=False)
    op.create_index('idx_access_request_pair_status', 'access_requests', ['doctor_id', 'patient_id', 'status'], unique=False)
    op.create_index('idx_access_request_patient_status', 'access_requests', ['patient_id', 'status'], unique=False)

    op.create_table(
        'one_time_codes',
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('bound_doctor_id', sa.String(), nullable=False),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('issued_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('patient_id', 'bound_doctor_id')
    )
    op.create_index(op.f('ix_one_time_codes_code'), 'one_time_codes', ['code'], unique=False)

    op.create_table(
        'emergency_overrides',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('doctor_user_id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('hospital_id', sa.String(), nullable=True),
        sa.Column('justification', sa.Text(), nullable=False),
        sa.Column('access_time', sa.DateTime(), nullable=False),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_emergency_overrides_doctor_user_id'), 'emergency_overrides', ['doctor_user_id'], unique=False)
    op.create_index(op.f('ix_emergency_overrides_patient_id'), 'emergency_overrides', ['patient_id'], unique=False)
    op.create_index(op.f('ix_emergency_overrides_hospital_id'), 'emergency_overrides', ['hospital_id'], unique=False)
    op.create_index(op.f('ix_emergency_overrides_access_time'), 'emergency_overrides', ['access_time'], unique=False)
    op.create_index('idx_emergency_pair_time', 'emergency_overrides', ['doctor_user_id', 'patient_id', 'access_time'], unique=False)

    op.create_table(
        'audit_log_entries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('actor_id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('access_type', sa.String(), nullable=False),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('details', sa.String(length=1000), nullable=True),
        sa.Column('otp_verified', sa.Boolean(), nullable=False),
        sa.Column('resource_type', sa.String(), nullable=True),
        sa.Column('resource_id', sa.String(), nullable=True),
        sa.Column('access_time', sa.DateTime(), nullable=False),
        sa.Column('ip_address', sa.String(), nullable=True),
        sa.Column('user_agent', sa.String(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_log_entries_actor_id'), 'audit_log_entries', ['actor_id'], unique=False)
    op.create_index(op.f('ix_audit_log_entries_patient_id'), 'audit_log_entries', ['patient_id'], unique=False)
    op.create_index(op.f('ix_audit_log_entries_access_time'), 'audit_log_entries', ['access_time'], unique=False)
    op.create_index('idx_audit_patient_time', 'audit_log_entries', ['patient_id', 'access_time'], unique=False)
    op.create_index('idx_audit_actor_time', 'audit_log_entries', ['actor_id', 'access_time'], unique=False)
    op.create_index('idx_audit_access_type', 'audit_log_entries', ['access_type'], unique=False)

    op.create_table(
        'notifications',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('recipient_user_id', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('message', sa.Text(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('priority', sa.String(), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False),
        sa.Column('read_at', sa.DateTime(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('delivery_status', sa.String(), nullable=False),
        sa.Column('delivery_error', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_notifications_recipient_user_id'), 'notifications', ['recipient_user_id'], unique=False)
    op.create_index('idx_notification_recipient_read', 'notifications', ['recipient_user_id', 'is_read'], unique=False)

    op.create_table(
        'observations',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('observation_type', sa.String(), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('sync_date', sa.DateTime(), nullable=True),
        sa.Column('external_id', sa.String(), nullable=True),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('last_edited_at', sa.DateTime(), nullable=True),
        sa.Column('last_edited_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_observations_patient_id'), 'observations', ['patient_id'], unique=False)
    op.create_index(op.f('ix_observations_external_id'), 'observations', ['external_id'], unique=False)

    op.create_table(
        'observation_editors',
        sa.Column('observation_id', sa.String(), nullable=False),
        sa.Column('clinician_id', sa.String(), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['observation_id'], ['observations.id']),
        sa.PrimaryKeyConstraint('observation_id', 'clinician_id')
    )

    op.create_table(
        'patient_passports',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('patient_id', sa.String(), nullable=False),
        sa.Column('created_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_patient_passports_patient_id'), 'patient_passports', ['patient_id'], unique=True)

    op.create_table(
        'passport_access_records',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('passport_id', sa.String(), nullable=False),
        sa.Column('doctor_id', sa.String(), nullable=False),
        sa.Column('access_type', sa.String(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('otp_verified', sa.Boolean(), nullable=False),
        sa.Column('access_date', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['passport_id'], ['patient_passports.id']),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_passport_access_records_passport_id'), 'passport_access_records', ['passport_id'], unique=False)
    op.create_index(op.f('ix_passport_access_records_doctor_id'), 'passport_access_records', ['doctor_id'], unique=False)


def downgrade():
    op.drop_table('passport_access_records')
    op.drop_table('patient_passports')
    op.drop_table('observation_editors')
    op.drop_table('observations')
    op.drop_table('notifications')
    op.drop_table('audit_log_entries')
    op.drop_table('emergency_overrides')
    op.drop_table('one_time_codes')
    op.drop_table('access_requests')
    op.drop_table('hospitals')
    op.drop_table('users')
