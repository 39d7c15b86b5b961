"""Seed the permission catalog, subscription plans and the SUPER_ADMIN role

Revision ID: 003_seed_permissions
Revises: 002_row_level_security
Create Date: 2026-01-07

"""
from alembic import op
from sqlmodel import Session

from trainhub.core.session_binder import SessionBinder
from trainhub.services.provisioning import bootstrap_platform

# revision identifiers
revision = '003_seed_permissions'
down_revision = '002_row_level_security'


def upgrade():
    session = Session(bind=op.get_bind())
    try:
        binder = SessionBinder(session, privileged=True)
        binder.clear_tenant_context()
        binder.enable_bypass()
        bootstrap_platform(session)
        session.flush()
    finally:
        session.close()


def downgrade():
    op.execute("SELECT enable_bypass_mode()")
    op.execute(
        "DELETE FROM role_permissions WHERE role_id IN "
        "(SELECT id FROM roles WHERE code = 'SUPER_ADMIN' AND tenant_id IS NULL)"
    )
    op.execute("DELETE FROM roles WHERE code = 'SUPER_ADMIN' AND tenant_id IS NULL")
    op.execute("DELETE FROM permissions")
    op.execute("DELETE FROM subscription_plans")
