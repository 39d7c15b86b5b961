"""
Tests for platform bootstrap and tenant provisioning
"""

from datetime import datetime, timedelta

import pytest
from sqlmodel import select

from trainhub.core.database import session_for_tenant, system_session
from trainhub.core.errors import Forbidden
from trainhub.core.permissions import Permission as PermissionCode
from trainhub.core.permissions import ROLE_PERMISSIONS, SystemRole
from trainhub.models import (
    Permission,
    Role,
    RolePermission,
    SubscriptionPlan,
    Tenant,
    TenantPlan,
    TenantStatus,
    User,
    UserRole,
)
from trainhub.services.provisioning import (
    ProvisioningError,
    assign_role,
    bootstrap_platform,
    create_super_admin,
    create_tenant_user,
    register_tenant,
)


def _grants(session, role):
    return set(session.exec(
        select(Permission.code)
        .join(RolePermission, RolePermission.permission_id == Permission.id)
        .where(RolePermission.role_id == role.id)
    ).all())


def test_bootstrap_is_idempotent(db):
    with system_session() as session:
        first = bootstrap_platform(session)
        second = bootstrap_platform(session)
        session.commit()

        assert first.id == second.id
        assert len(session.exec(select(Permission)).all()) == len(PermissionCode)
        assert len(session.exec(select(SubscriptionPlan)).all()) == 3
        assert _grants(session, first) == set(ROLE_PERMISSIONS[SystemRole.SUPER_ADMIN])


def test_register_tenant(platform):
    with system_session() as session:
        tenant = session.get(Tenant, platform.acme.id)
        roles = session.exec(select(Role).where(Role.tenant_id == tenant.id)).all()

        assert tenant.subscription_status == TenantStatus.TRIAL
        assert tenant.subscription_plan == TenantPlan.STARTER
        assert tenant.trial_ends_at > datetime.utcnow() + timedelta(days=13)
        assert tenant.contact_email == "admin@acme.com"
        assert {r.code for r in roles} == {"TENANT_ADMIN", "MANAGER", "INSTRUCTOR"}

        admin_role = next(r for r in roles if r.code == "TENANT_ADMIN")
        assert _grants(session, admin_role) == set(ROLE_PERMISSIONS[SystemRole.TENANT_ADMIN])

        assignments = session.exec(select(UserRole).where(UserRole.user_id == platform.acme_admin.id)).all()
        assert [a.role_id for a in assignments] == [admin_role.id]
        assert assignments[0].tenant_id == tenant.id


def test_register_tenant_applies_plan_limits(platform):
    with system_session() as session:
        tenant, _ = register_tenant(
            session,
            slug="Initech",
            company_name="Initech Learning",
            admin_email="peter@initech.com",
            admin_password="initech-password",
            admin_first_name="Peter",
            admin_last_name="Gibbons",
            plan=TenantPlan.ENTERPRISE,
        )
        session.commit()

    assert tenant.slug == "initech"
    assert tenant.max_users == 500
    assert tenant.max_courses == 5000


def test_register_tenant_slug_conflict(platform):
    with system_session() as session:
        with pytest.raises(ProvisioningError):
            register_tenant(
                session,
                slug="acme",
                company_name="Acme Again",
                admin_email="other@acme.com",
                admin_password="other-password",
                admin_first_name="Other",
                admin_last_name="Person",
            )


def test_deleted_tenant_slug_stays_reserved(platform):
    with system_session() as session:
        tenant = session.get(Tenant, platform.globex.id)
        tenant.deleted_at = datetime.utcnow()
        session.add(tenant)
        session.commit()

        with pytest.raises(ProvisioningError):
            register_tenant(
                session,
                slug="globex",
                company_name="Globex Reborn",
                admin_email="new@globex.com",
                admin_password="globex-password",
                admin_first_name="New",
                admin_last_name="Owner",
            )


def test_same_email_in_two_tenants(platform):
    with session_for_tenant(platform.globex.id) as session:
        user = create_tenant_user(
            session, platform.globex.id, "admin@acme.com", "other-password", "Ada", "Globex",
        )
        session.commit()

    assert user.tenant_id == platform.globex.id


def test_duplicate_email_in_tenant(platform):
    with session_for_tenant(platform.acme.id) as session:
        with pytest.raises(ProvisioningError):
            create_tenant_user(
                session, platform.acme.id, "admin@acme.com", "other-password", "Ada", "Again",
            )


def test_unknown_role_code(platform):
    with session_for_tenant(platform.acme.id) as session:
        with pytest.raises(ProvisioningError):
            create_tenant_user(
                session, platform.acme.id, "x@acme.com", "some-password", "X", "Y", role_codes=["SUPER_ADMIN"],
            )


def test_system_role_cannot_be_assigned_to_tenant_user(platform):
    with system_session() as session:
        user = session.get(User, platform.acme_admin.id)
        role = session.exec(select(Role).where(Role.code == "SUPER_ADMIN")).one()

        with pytest.raises(Forbidden):
            assign_role(session, user, role)


def test_role_of_other_tenant_cannot_be_assigned(platform):
    with system_session() as session:
        user = session.get(User, platform.acme_admin.id)
        role = session.exec(
            select(Role).where(Role.tenant_id == platform.globex.id, Role.code == "MANAGER")
        ).one()

        with pytest.raises(Forbidden):
            assign_role(session, user, role)


def test_super_admin_is_unique(platform):
    with system_session() as session:
        with pytest.raises(ProvisioningError):
            create_super_admin(session, "root@trainhub.io", "another-password")


def test_super_admin_user(platform):
    with system_session() as session:
        user = session.get(User, platform.super_admin.id)

    assert user.tenant_id is None
    assert user.is_system_user


def test_timestamps_are_stored_as_naive_utc(platform):
    with system_session() as session:
        tenant = session.get(Tenant, platform.acme.id)

    assert tenant.created_at.tzinfo is None
    assert datetime.utcnow() - tenant.created_at < timedelta(minutes=5)
    assert tenant.trial_ends_at.tzinfo is None
