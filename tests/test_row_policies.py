"""
Tests for the row-level policy layer (ORM enforcement and generated DDL)
"""

from datetime import datetime, timedelta
from pathlib import Path
import importlib.util

import pytest
from sqlalchemy import delete, func, text, update
from sqlmodel import SQLModel, select

from trainhub.core.database import session_for_tenant, system_session
from trainhub.core.errors import UnscopedStatement
from trainhub.core.row_policies import (
    GlobalTable,
    OwnedBy,
    TenantColumn,
    TenantOrGlobal,
    install_statements,
    policy_for,
    registered_policies,
    undeclared_tables,
    uninstall_statements,
    unprotected_tables,
)
from trainhub.models import Course, CourseSession, Permission, Role, RolePermission, Tenant, User


@pytest.fixture
def globex_course(platform):
    """Two courses in acme, one in globex"""
    with session_for_tenant(platform.acme.id) as session:
        session.add(Course(tenant_id=platform.acme.id, title="Forklift Safety"))
        session.add(Course(tenant_id=platform.acme.id, title="First Aid"))
        session.commit()
    with session_for_tenant(platform.globex.id) as session:
        course = Course(tenant_id=platform.globex.id, title="Crane Operation")
        session.add(course)
        session.commit()
    return course


# Registry

def test_every_table_declares_a_policy():
    assert undeclared_tables(SQLModel.metadata) == []


def test_every_tenant_table_is_protected():
    assert unprotected_tables(SQLModel.metadata) == []


def test_declared_policies():
    assert isinstance(policy_for(Course), TenantColumn)
    assert isinstance(policy_for(CourseSession), TenantColumn)
    assert isinstance(policy_for(User), TenantColumn)
    assert isinstance(policy_for(Role), TenantOrGlobal)
    assert isinstance(policy_for(RolePermission), OwnedBy)
    assert isinstance(policy_for(Tenant), GlobalTable)
    assert isinstance(policy_for(Permission), GlobalTable)


# DDL

def test_tenant_column_ddl():
    statements = TenantColumn().enable_ddl("courses")

    assert 'ALTER TABLE "courses" ENABLE ROW LEVEL SECURITY' in statements
    assert 'ALTER TABLE "courses" FORCE ROW LEVEL SECURITY' in statements
    isolation = next(s for s in statements if "tenant_isolation_policy" in s)
    assert "tenant_id::text = NULLIF(current_setting('app.current_tenant', true), '')" in isolation
    bypass = next(s for s in statements if "bypass_policy" in s)
    assert "current_setting('app.bypass_rls', true) = 'true'" in bypass


def test_tenant_or_global_ddl_checks_writes_by_tenant_only():
    policy = TenantOrGlobal()

    assert "tenant_id IS NULL" in policy.using_sql("roles")
    assert "IS NULL" not in policy.check_sql("roles")


def test_owned_by_ddl_references_owner():
    sql = policy_for(RolePermission).using_sql("role_permissions")

    assert 'EXISTS (SELECT 1 FROM "roles"' in sql
    assert '"roles".id = "role_permissions".role_id' in sql


def test_global_tables_emit_no_policy():
    assert GlobalTable().enable_ddl("tenants") == []


def test_install_statements_cover_registered_tables():
    statements = "\n".join(install_statements())

    for table, _model, policy in registered_policies():
        if policy.isolates:
            assert f'ALTER TABLE "{table}" FORCE ROW LEVEL SECURITY' in statements
    assert "CREATE OR REPLACE FUNCTION set_tenant_context(tenant_id text)" in statements
    assert "CREATE OR REPLACE FUNCTION enable_bypass_mode()" in statements
    assert "trg_courses_tenant_immutable" in statements
    assert "trg_role_permissions_reserved" in statements
    assert 'ALTER TABLE "tenants"' not in statements


def test_uninstall_reverses_install():
    statements = "\n".join(uninstall_statements())

    assert 'DROP POLICY IF EXISTS tenant_isolation_policy ON "courses"' in statements
    assert "DROP FUNCTION IF EXISTS set_tenant_context(text)" in statements


def _load_revision(filename):
    path = Path(__file__).resolve().parent.parent / "alembic" / "versions" / filename
    spec = importlib.util.spec_from_file_location(path.stem, path)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_frozen_migration_matches_declared_policies():
    revision = _load_revision("2026_01_06_002_row_level_security.py")

    frozen = {
        table: (using, check, has_tenant_column)
        for table, using, check, has_tenant_column in revision.POLICIES
    }
    declared = {
        table: (policy.using_sql(table), policy.check_sql(table), policy.has_tenant_column)
        for table, _model, policy in registered_policies()
        if policy.isolates
    }
    assert frozen == declared


# ORM enforcement

def test_tenant_sees_only_own_rows(globex_course, platform):
    with session_for_tenant(platform.acme.id) as session:
        titles = sorted(c.title for c in session.exec(select(Course)).all())

    assert titles == ["First Aid", "Forklift Safety"]


def test_cross_tenant_get_returns_nothing(globex_course, platform):
    with session_for_tenant(platform.acme.id) as session:
        assert session.get(Course, globex_course.id) is None


def test_explicit_filter_cannot_widen_visibility(globex_course, platform):
    with session_for_tenant(platform.acme.id) as session:
        stolen = session.exec(
            select(Course).where(Course.tenant_id == platform.globex.id)
        ).all()

    assert stolen == []


def test_aggregates_are_scoped(globex_course, platform):
    with session_for_tenant(platform.globex.id) as session:
        count = session.exec(select(func.count()).select_from(Course)).one()

    assert count == 1


def test_no_tenant_fails_closed(globex_course):
    with session_for_tenant(None) as session:
        assert session.exec(select(Course)).all() == []


def test_bypass_sees_all_rows(globex_course):
    with system_session() as session:
        assert len(session.exec(select(Course)).all()) == 3


def test_cross_tenant_update_affects_no_rows(globex_course, platform):
    with session_for_tenant(platform.acme.id) as session:
        result = session.exec(
            update(Course).where(Course.id == globex_course.id).values(title="Hijacked")
        )
        session.commit()

    assert result.rowcount == 0
    with session_for_tenant(platform.globex.id) as session:
        assert session.get(Course, globex_course.id).title == "Crane Operation"


def test_cross_tenant_delete_affects_no_rows(globex_course, platform):
    with session_for_tenant(platform.acme.id) as session:
        result = session.exec(delete(Course).where(Course.id == globex_course.id))
        session.commit()

    assert result.rowcount == 0
    with session_for_tenant(platform.globex.id) as session:
        assert session.get(Course, globex_course.id) is not None


def test_raw_sql_rejected(globex_course, platform):
    with session_for_tenant(platform.acme.id) as session:
        with pytest.raises(UnscopedStatement):
            session.execute(text("SELECT title FROM courses"))


def test_raw_sql_allowed_when_marked(globex_course, platform):
    with session_for_tenant(platform.acme.id) as session:
        value = session.execute(
            text("SELECT 1"),
            execution_options={"allow_raw_sql": True},
        ).scalar()

    assert value == 1


def test_soft_deleted_rows_hidden(globex_course, platform):
    with session_for_tenant(platform.globex.id) as session:
        course = session.get(Course, globex_course.id)
        course.deleted_at = datetime.utcnow()
        session.add(course)
        session.commit()

    with session_for_tenant(platform.globex.id) as session:
        assert session.exec(select(Course)).all() == []
        deleted = session.exec(
            select(Course).execution_options(include_deleted=True)
        ).all()

    assert [c.title for c in deleted] == ["Crane Operation"]


def test_include_deleted_keeps_tenant_scope(globex_course, platform):
    with session_for_tenant(platform.globex.id) as session:
        course = session.get(Course, globex_course.id)
        course.deleted_at = datetime.utcnow()
        session.add(course)
        session.commit()

    with session_for_tenant(platform.acme.id) as session:
        titles = {
            c.title
            for c in session.exec(select(Course).execution_options(include_deleted=True)).all()
        }

    assert titles == {"Forklift Safety", "First Aid"}


def test_relationship_loads_are_scoped(globex_course, platform):
    start = datetime(2026, 3, 1, 9, 0)
    with session_for_tenant(platform.globex.id) as session:
        session.add(CourseSession(
            tenant_id=platform.globex.id,
            course_id=globex_course.id,
            starts_at=start,
            ends_at=start + timedelta(hours=8),
        ))
        session.commit()

    with session_for_tenant(platform.globex.id) as session:
        course = session.get(Course, globex_course.id)
        assert len(course.sessions) == 1

    with session_for_tenant(platform.acme.id) as session:
        assert session.exec(select(CourseSession)).all() == []


def test_lazy_load_from_unqueried_parent_is_scoped(platform):
    course = Course(tenant_id=platform.acme.id, title="Ladder Safety")
    start = datetime(2026, 4, 1, 9, 0)
    with session_for_tenant(platform.globex.id) as session:
        session.add(CourseSession(
            tenant_id=platform.globex.id,
            course_id=course.id,
            starts_at=start,
            ends_at=start + timedelta(hours=2),
        ))
        session.commit()

    # Parent is added, never queried
    with session_for_tenant(platform.acme.id) as session:
        session.add(course)
        session.commit()
        assert course.sessions == []


def test_lazy_load_hides_soft_deleted_children(platform):
    course = Course(tenant_id=platform.acme.id, title="Ladder Safety")
    start = datetime(2026, 4, 1, 9, 0)
    with session_for_tenant(platform.acme.id) as session:
        session.add(course)
        session.add(CourseSession(
            tenant_id=platform.acme.id,
            course_id=course.id,
            starts_at=start,
            ends_at=start + timedelta(hours=2),
            deleted_at=datetime.utcnow(),
        ))
        session.add(CourseSession(
            tenant_id=platform.acme.id,
            course_id=course.id,
            starts_at=start + timedelta(days=7),
            ends_at=start + timedelta(days=7, hours=2),
        ))
        session.commit()

        assert [s.starts_at for s in course.sessions] == [start + timedelta(days=7)]


def test_tenant_roles_and_system_roles_visible(platform):
    with session_for_tenant(platform.acme.id) as session:
        roles = session.exec(select(Role)).all()

    tenants = {r.tenant_id for r in roles}
    assert tenants == {None, platform.acme.id}
    assert "SUPER_ADMIN" in {r.code for r in roles if r.tenant_id is None}


def test_role_grants_follow_role_visibility(platform):
    with session_for_tenant(platform.acme.id) as session:
        visible_role_ids = {r.id for r in session.exec(select(Role)).all()}
        grant_role_ids = {g.role_id for g in session.exec(select(RolePermission)).all()}

    assert grant_role_ids <= visible_role_ids

    with session_for_tenant(platform.globex.id) as session:
        globex_grant_role_ids = {g.role_id for g in session.exec(select(RolePermission)).all()}
    with system_session() as session:
        system_role_ids = {r.id for r in session.exec(select(Role).where(Role.tenant_id == None)).all()}  # noqa: E711

    # Only the grants of system roles are visible to both tenants
    assert grant_role_ids & globex_grant_role_ids == system_role_ids


def test_tenant_cannot_update_system_roles(platform):
    with session_for_tenant(platform.acme.id) as session:
        result = session.exec(
            update(Role).where(Role.code == "SUPER_ADMIN").values(is_active=False)
        )
        session.commit()

    assert result.rowcount == 0
    with system_session() as session:
        role = session.exec(select(Role).where(Role.code == "SUPER_ADMIN")).one()

    assert role.is_active
