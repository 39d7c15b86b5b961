"""
Tests for resolving bearer credentials into principals
"""

from datetime import datetime, timedelta
import uuid

import pytest
from sqlmodel import select

from trainhub.core.auth import create_access_token
from trainhub.core.database import session_for_tenant, system_session
from trainhub.core.errors import ExpiredCredential, InvalidCredential, PrincipalNotFound
from trainhub.core.identity import resolve_principal
from trainhub.models import Permission, Role, RolePermission, Tenant, TenantStatus, User
from trainhub.services.provisioning import assign_role, create_role, create_tenant_user

from conftest import token_for


def test_tenant_admin_principal(platform):
    principal = resolve_principal(token_for(platform.acme_admin))

    assert principal.user_id == platform.acme_admin.id
    assert principal.tenant_id == platform.acme.id
    assert principal.email == "admin@acme.com"
    assert principal.roles == frozenset({"TENANT_ADMIN"})
    assert "courses:delete" in principal.permissions
    assert not principal.bypass_isolation
    assert not principal.is_system_user


def test_super_admin_principal(platform):
    principal = resolve_principal(token_for(platform.super_admin))

    assert principal.tenant_id is None
    assert principal.roles == frozenset({"SUPER_ADMIN"})
    assert "*" in principal.permissions
    assert principal.bypass_isolation
    assert principal.is_system_user


def test_invalid_token(db):
    with pytest.raises(InvalidCredential):
        resolve_principal("not-a-token")


def test_expired_token(platform):
    token = create_access_token(
        platform.acme_admin.id, platform.acme.id, expires_delta=timedelta(seconds=-1)
    )

    with pytest.raises(ExpiredCredential):
        resolve_principal(token)


def test_unknown_user(platform):
    token = create_access_token(uuid.uuid4(), platform.acme.id)

    with pytest.raises(PrincipalNotFound):
        resolve_principal(token)


def test_token_for_wrong_tenant(platform):
    # A valid acme user presented with globex's tenant claim is not visible there
    token = create_access_token(platform.acme_admin.id, platform.globex.id)

    with pytest.raises(PrincipalNotFound):
        resolve_principal(token)


def test_tenant_user_claiming_no_tenant(platform):
    token = create_access_token(platform.acme_admin.id, None)

    with pytest.raises(PrincipalNotFound):
        resolve_principal(token)


def test_inactive_user_rejected(platform):
    token = token_for(platform.acme_admin)

    with session_for_tenant(platform.acme.id) as session:
        user = session.get(User, platform.acme_admin.id)
        user.is_active = False
        session.add(user)
        session.commit()

    with pytest.raises(PrincipalNotFound):
        resolve_principal(token)


def test_deleted_tenant_rejected(platform):
    token = token_for(platform.globex_admin)

    with system_session() as session:
        tenant = session.get(Tenant, platform.globex.id)
        tenant.deleted_at = datetime.utcnow()
        tenant.is_active = False
        session.add(tenant)
        session.commit()

    with pytest.raises(PrincipalNotFound):
        resolve_principal(token)


def test_suspended_tenant_rejected(platform):
    with system_session() as session:
        tenant = session.get(Tenant, platform.acme.id)
        tenant.subscription_status = TenantStatus.SUSPENDED
        session.add(tenant)
        session.commit()

    with pytest.raises(PrincipalNotFound):
        resolve_principal(token_for(platform.acme_admin))


def test_permission_revocation_applies_to_next_request(platform):
    token = token_for(platform.acme_admin)
    assert "reports:export" in resolve_principal(token).permissions

    with session_for_tenant(platform.acme.id) as session:
        role = session.exec(
            select(Role).where(Role.tenant_id == platform.acme.id, Role.code == "TENANT_ADMIN")
        ).one()
        permission = session.exec(select(Permission).where(Permission.code == "reports:export")).one()
        session.delete(session.get(RolePermission, (role.id, permission.id)))
        session.commit()

    assert "reports:export" not in resolve_principal(token).permissions


def test_inactive_role_grants_nothing(platform):
    token = token_for(platform.acme_admin)

    with session_for_tenant(platform.acme.id) as session:
        role = session.exec(
            select(Role).where(Role.tenant_id == platform.acme.id, Role.code == "TENANT_ADMIN")
        ).one()
        role.is_active = False
        session.add(role)
        session.commit()

    principal = resolve_principal(token)
    assert principal.roles == frozenset()
    assert principal.permissions == frozenset()


def test_roles_union_permissions(platform):
    with session_for_tenant(platform.globex.id) as session:
        user = create_tenant_user(
            session,
            platform.globex.id,
            email="trainer@globex.com",
            password="trainer-password",
            first_name="Tina",
            last_name="Trainer",
            role_codes=["INSTRUCTOR"],
        )
        auditor = create_role(session, platform.globex.id, "AUDITOR", "Auditor", ["reports:export"])
        assign_role(session, user, auditor)
        session.commit()

    principal = resolve_principal(token_for(user))

    assert principal.roles == frozenset({"INSTRUCTOR", "AUDITOR"})
    assert {"sessions:view", "reports:export"} <= principal.permissions
    assert "courses:delete" not in principal.permissions


def test_reserved_codes_never_reach_tenant_principals(platform):
    # A grant row planted behind the application's back, e.g. by a manual fix in the database
    with system_session() as session:
        role = session.exec(
            select(Role).where(Role.tenant_id == platform.acme.id, Role.code == "TENANT_ADMIN")
        ).one()
        permission = session.exec(select(Permission).where(Permission.code == "tenants:delete")).one()
        session.connection().execute(
            RolePermission.__table__.insert().values(role_id=role.id, permission_id=permission.id)
        )
        session.commit()

    principal = resolve_principal(token_for(platform.acme_admin))

    assert "tenants:delete" not in principal.permissions
    assert not principal.bypass_isolation
