"""Initial schema: tenants, identity, roles and courses

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-01-06

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision = '001_initial_schema'
down_revision = None

TENANT_PLAN = sa.Enum('STARTER', 'PROFESSIONAL', 'ENTERPRISE', name='tenantplan')
TENANT_STATUS = sa.Enum('TRIAL', 'ACTIVE', 'SUSPENDED', 'CANCELLED', 'EXPIRED', name='tenantstatus')
COURSE_STATUS = sa.Enum('DRAFT', 'PUBLISHED', 'ARCHIVED', name='coursestatus')
COURSE_SESSION_STATUS = sa.Enum('SCHEDULED', 'IN_PROGRESS', 'COMPLETED', 'CANCELLED', name='coursesessionstatus')


def _uuid(name, **kwargs):
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def _tenant_columns(nullable=False):
    """tenant_id and the timestamp columns shared by tenant-scoped tables"""
    return [
        _uuid('tenant_id', sa.ForeignKey('tenants.id'), nullable=nullable, index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True, index=True),
    ]


def upgrade():
    # Global tables
    op.create_table(
        'tenants',
        _uuid('id', primary_key=True),
        sa.Column('slug', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('company_name', sa.String(255), nullable=False),
        sa.Column('subscription_plan', TENANT_PLAN, nullable=False, server_default='STARTER'),
        sa.Column('subscription_status', TENANT_STATUS, nullable=False, server_default='TRIAL', index=True),
        sa.Column('max_users', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('max_courses', sa.Integer(), nullable=False, server_default='50'),
        sa.Column('max_students', sa.Integer(), nullable=False, server_default='1000'),
        sa.Column('trial_ends_at', sa.DateTime(), nullable=True),
        sa.Column('contact_email', sa.String(255), nullable=True),
        sa.Column('contact_phone', sa.String(50), nullable=True),
        sa.Column('settings', sa.JSON(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('deleted_at', sa.DateTime(), nullable=True, index=True),
    )

    op.create_table(
        'subscription_plans',
        _uuid('id', primary_key=True),
        sa.Column('code', sa.String(50), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('max_users', sa.Integer(), nullable=False),
        sa.Column('max_courses', sa.Integer(), nullable=False),
        sa.Column('max_students', sa.Integer(), nullable=False),
        sa.Column('price_monthly', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        'permissions',
        _uuid('id', primary_key=True),
        sa.Column('code', sa.String(100), nullable=False, unique=True, index=True),
        sa.Column('name', sa.String(150), nullable=False),
        sa.Column('module', sa.String(50), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
    )

    # Identity
    op.create_table(
        'users',
        _uuid('id', primary_key=True),
        *_tenant_columns(nullable=True),
        sa.Column('email', sa.String(255), nullable=False, index=True),
        sa.Column('password_hash', sa.String(), nullable=False),
        sa.Column('first_name', sa.String(100), nullable=False),
        sa.Column('last_name', sa.String(100), nullable=False),
        sa.Column('phone', sa.String(50), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        sa.Column('is_system_user', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('last_login_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('tenant_id', 'email', name='uq_users_tenant_email'),
        # Only system users may exist without a tenant
        sa.CheckConstraint('tenant_id IS NOT NULL OR is_system_user', name='ck_users_tenant_or_system'),
    )

    op.create_table(
        'roles',
        _uuid('id', primary_key=True),
        *_tenant_columns(nullable=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('code', sa.String(50), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_system_role', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true', index=True),
        sa.UniqueConstraint('tenant_id', 'code', name='uq_roles_tenant_code'),
    )

    op.create_table(
        'role_permissions',
        _uuid('role_id', sa.ForeignKey('roles.id', ondelete='CASCADE'), primary_key=True),
        _uuid('permission_id', sa.ForeignKey('permissions.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.current_timestamp()),
    )

    op.create_table(
        'user_roles',
        _uuid('id', primary_key=True),
        *_tenant_columns(nullable=True),
        _uuid('user_id', sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        _uuid('role_id', sa.ForeignKey('roles.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.UniqueConstraint('user_id', 'role_id', name='uq_user_roles_user_role'),
    )

    op.create_table(
        'user_sessions',
        _uuid('id', primary_key=True),
        *_tenant_columns(nullable=True),
        _uuid('user_id', sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('refresh_token_hash', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('revoked_at', sa.DateTime(), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
    )

    # Business entities
    op.create_table(
        'courses',
        _uuid('id', primary_key=True),
        *_tenant_columns(),
        sa.Column('title', sa.String(255), nullable=False, index=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('duration_hours', sa.Integer(), nullable=False, server_default='8'),
        sa.Column('price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('status', COURSE_STATUS, nullable=False, server_default='DRAFT', index=True),
    )

    op.create_table(
        'course_sessions',
        _uuid('id', primary_key=True),
        *_tenant_columns(),
        _uuid('course_id', sa.ForeignKey('courses.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('starts_at', sa.DateTime(), nullable=False),
        sa.Column('ends_at', sa.DateTime(), nullable=False),
        sa.Column('capacity', sa.Integer(), nullable=False, server_default='20'),
        sa.Column('status', COURSE_SESSION_STATUS, nullable=False, server_default='SCHEDULED'),
    )


def downgrade():
    op.drop_table('course_sessions')
    op.drop_table('courses')
    op.drop_table('user_sessions')
    op.drop_table('user_roles')
    op.drop_table('role_permissions')
    op.drop_table('roles')
    op.drop_table('users')
    op.drop_table('permissions')
    op.drop_table('subscription_plans')
    op.drop_table('tenants')

    for enum in (COURSE_SESSION_STATUS, COURSE_STATUS, TENANT_STATUS, TENANT_PLAN):
        enum.drop(op.get_bind(), checkfirst=True)
