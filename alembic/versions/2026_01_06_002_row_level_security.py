"""Row-level security policies, binder functions and tenant triggers

Revision ID: 002_row_level_security
Revises: 001_initial_schema
Create Date: 2026-01-06

The SQL is frozen as of this revision. Later changes to the row policies
declared on the models need a new revision; scripts/verify_isolation.py
reports tables the database does not protect.
"""
from alembic import op

# revision identifiers
revision = '002_row_level_security'
down_revision = '001_initial_schema'

CURRENT_TENANT = "NULLIF(current_setting('app.current_tenant', true), '')"
BYPASS = "current_setting('app.bypass_rls', true) = 'true'"

TENANT_ONLY = f"tenant_id::text = {CURRENT_TENANT}"
TENANT_OR_GLOBAL = f"tenant_id IS NULL OR tenant_id::text = {CURRENT_TENANT}"

# table -> (USING, WITH CHECK, has tenant_id column)
POLICIES = [
    ('users', TENANT_ONLY, TENANT_ONLY, True),
    ('user_sessions', TENANT_ONLY, TENANT_ONLY, True),
    ('roles', TENANT_OR_GLOBAL, TENANT_ONLY, True),
    (
        'role_permissions',
        f'EXISTS (SELECT 1 FROM "roles" WHERE "roles".id = "role_permissions".role_id '
        f'AND ({TENANT_OR_GLOBAL}))',
        f'EXISTS (SELECT 1 FROM "roles" WHERE "roles".id = "role_permissions".role_id '
        f'AND ({TENANT_ONLY}))',
        False,
    ),
    ('user_roles', TENANT_ONLY, TENANT_ONLY, True),
    ('courses', TENANT_ONLY, TENANT_ONLY, True),
    ('course_sessions', TENANT_ONLY, TENANT_ONLY, True),
]

BINDER_FUNCTIONS = {
    'set_tenant_context(tenant_id text)': "PERFORM set_config('app.current_tenant', tenant_id, true);",
    'clear_tenant_context()': "PERFORM set_config('app.current_tenant', '', true);",
    'enable_bypass_mode()': "PERFORM set_config('app.bypass_rls', 'true', true);",
    'disable_bypass_mode()': "PERFORM set_config('app.bypass_rls', 'false', true);",
}


def upgrade():
    # Helpers called by the session binder at transaction start
    for signature, body in BINDER_FUNCTIONS.items():
        op.execute(f"""
            CREATE OR REPLACE FUNCTION {signature}
            RETURNS void AS $$
            BEGIN
                {body}
            END;
            $$ LANGUAGE plpgsql
        """)

    op.execute("""
        CREATE OR REPLACE FUNCTION prevent_tenant_reassignment()
        RETURNS trigger AS $$
        BEGIN
            IF NEW.tenant_id IS DISTINCT FROM OLD.tenant_id THEN
                RAISE EXCEPTION 'tenant_id of a % row cannot be reassigned', TG_TABLE_NAME
                    USING ERRCODE = 'check_violation';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)

    for table, using, check, has_tenant_column in POLICIES:
        op.execute(f'ALTER TABLE "{table}" ENABLE ROW LEVEL SECURITY')
        op.execute(f'ALTER TABLE "{table}" FORCE ROW LEVEL SECURITY')
        op.execute(
            f'CREATE POLICY tenant_isolation_policy ON "{table}" FOR ALL '
            f'USING ({using}) WITH CHECK ({check})'
        )
        op.execute(
            f'CREATE POLICY bypass_policy ON "{table}" FOR ALL '
            f'USING ({BYPASS}) WITH CHECK ({BYPASS})'
        )
        if has_tenant_column:
            op.execute(
                f'CREATE TRIGGER trg_{table}_tenant_immutable BEFORE UPDATE OF tenant_id ON "{table}" '
                'FOR EACH ROW EXECUTE FUNCTION prevent_tenant_reassignment()'
            )

    # Tenant-scoped roles never hold tenant-management permissions
    op.execute("""
        CREATE OR REPLACE FUNCTION forbid_reserved_tenant_grants()
        RETURNS trigger AS $$
        BEGIN
            IF EXISTS (
                SELECT 1
                FROM "roles" r, "permissions" p
                WHERE r.id = NEW.role_id
                  AND p.id = NEW.permission_id
                  AND r.tenant_id IS NOT NULL
                  AND (p.module = 'tenants' OR p.code = '*')
            ) THEN
                RAISE EXCEPTION 'tenant-scoped roles cannot hold tenants permissions'
                    USING ERRCODE = 'insufficient_privilege';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
    """)
    op.execute(
        'CREATE TRIGGER trg_role_permissions_reserved BEFORE INSERT OR UPDATE ON "role_permissions" '
        'FOR EACH ROW EXECUTE FUNCTION forbid_reserved_tenant_grants()'
    )


def downgrade():
    op.execute('DROP TRIGGER IF EXISTS trg_role_permissions_reserved ON "role_permissions"')
    op.execute('DROP FUNCTION IF EXISTS forbid_reserved_tenant_grants()')

    for table, _using, _check, has_tenant_column in reversed(POLICIES):
        if has_tenant_column:
            op.execute(f'DROP TRIGGER IF EXISTS trg_{table}_tenant_immutable ON "{table}"')
        op.execute(f'DROP POLICY IF EXISTS bypass_policy ON "{table}"')
        op.execute(f'DROP POLICY IF EXISTS tenant_isolation_policy ON "{table}"')
        op.execute(f'ALTER TABLE "{table}" NO FORCE ROW LEVEL SECURITY')
        op.execute(f'ALTER TABLE "{table}" DISABLE ROW LEVEL SECURITY')

    op.execute('DROP FUNCTION IF EXISTS prevent_tenant_reassignment()')
    op.execute('DROP FUNCTION IF EXISTS disable_bypass_mode()')
    op.execute('DROP FUNCTION IF EXISTS enable_bypass_mode()')
    op.execute('DROP FUNCTION IF EXISTS clear_tenant_context()')
    op.execute('DROP FUNCTION IF EXISTS set_tenant_context(text)')
