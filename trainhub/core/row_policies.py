"""
Row-level policy layer

Tables declare their isolation rule once, with ``@row_policy(...)`` on the
model. Each declaration compiles to two independent enforcement layers:

* PostgreSQL row-level security (policies, triggers and binder helper
  functions) installed by the migrations, evaluated by the database on every
  read and write.
* An ORM query wrapper that injects the same predicates into every ORM
  SELECT, UPDATE and DELETE issued through a SQLAlchemy session.

Both fail closed: with no tenant bound and bypass off, tenant rows are
invisible.
"""

from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy import MetaData, event, false, or_, select
from sqlalchemy.sql.expression import TextClause
from sqlalchemy.orm import Session, with_loader_criteria

from trainhub.core.config import get_settings
from trainhub.core.errors import TenantContextUnbound, UnscopedStatement
from trainhub.core.session_binder import Binding, get_binding

logger = structlog.get_logger(__name__)

TENANT_COLUMN = "tenant_id"


def _current_tenant_sql() -> str:
    return f"NULLIF(current_setting('{get_settings().TENANT_SETTING_NAME}', true), '')"


def _bypass_sql() -> str:
    return f"current_setting('{get_settings().BYPASS_SETTING_NAME}', true) = 'true'"


class RowPolicy:
    """Base declaration; subclasses define the isolation predicate"""

    isolates = True
    has_tenant_column = False

    def orm_criteria(self, model, binding: Binding):
        """SQL expression limiting rows of ``model``, or None for no limit"""
        raise NotImplementedError

    def write_criteria(self, model, binding: Binding):
        """Limit for ORM UPDATE and DELETE statements"""
        return self.orm_criteria(model, binding)

    def using_sql(self, table: str) -> str:
        raise NotImplementedError

    def check_sql(self, table: str) -> str:
        return self.using_sql(table)

    def enable_ddl(self, table: str) -> List[str]:
        if not self.isolates:
            return []
        bypass = _bypass_sql()
        return [
            f'ALTER TABLE "{table}" ENABLE ROW LEVEL SECURITY',
            f'ALTER TABLE "{table}" FORCE ROW LEVEL SECURITY',
            f'CREATE POLICY tenant_isolation_policy ON "{table}" FOR ALL '
            f"USING ({self.using_sql(table)}) "
            f"WITH CHECK ({self.check_sql(table)})",
            f'CREATE POLICY bypass_policy ON "{table}" FOR ALL '
            f"USING ({bypass}) WITH CHECK ({bypass})",
        ]

    def disable_ddl(self, table: str) -> List[str]:
        if not self.isolates:
            return []
        return [
            f'DROP POLICY IF EXISTS bypass_policy ON "{table}"',
            f'DROP POLICY IF EXISTS tenant_isolation_policy ON "{table}"',
            f'ALTER TABLE "{table}" NO FORCE ROW LEVEL SECURITY',
            f'ALTER TABLE "{table}" DISABLE ROW LEVEL SECURITY',
        ]


class TenantColumn(RowPolicy):
    """Row belongs to the tenant named in its own tenant_id column"""

    has_tenant_column = True

    def orm_criteria(self, model, binding: Binding):
        if binding.bypass:
            return None
        column = getattr(model, TENANT_COLUMN)
        if binding.tenant_id is None:
            return false()
        return column == binding.tenant_id

    def using_sql(self, table: str) -> str:
        return f"{TENANT_COLUMN}::text = {_current_tenant_sql()}"


class TenantOrGlobal(TenantColumn):
    """Tenant rows plus global rows (tenant_id NULL); global rows writable only in bypass"""

    def orm_criteria(self, model, binding: Binding):
        if binding.bypass:
            return None
        column = getattr(model, TENANT_COLUMN)
        if binding.tenant_id is None:
            return column.is_(None)
        return or_(column.is_(None), column == binding.tenant_id)

    def write_criteria(self, model, binding: Binding):
        return TenantColumn.orm_criteria(self, model, binding)

    def using_sql(self, table: str) -> str:
        return f"{TENANT_COLUMN} IS NULL OR {TENANT_COLUMN}::text = {_current_tenant_sql()}"

    def check_sql(self, table: str) -> str:
        return f"{TENANT_COLUMN}::text = {_current_tenant_sql()}"


class OwnedBy(RowPolicy):
    """Row has no tenant column; it is visible when its owning row is"""

    has_tenant_column = False

    def __init__(self, owner_table: str, foreign_key: str, owner_key: str = "id"):
        self.owner_table = owner_table
        self.foreign_key = foreign_key
        self.owner_key = owner_key

    def _owner(self) -> Tuple[type, RowPolicy]:
        try:
            return _REGISTRY[self.owner_table]
        except KeyError:
            raise LookupError(f"Owner table {self.owner_table!r} has no row policy") from None

    def _owned(self, model, owner_model, owner_criteria):
        if owner_criteria is None:
            return None
        owner_ids = select(getattr(owner_model, self.owner_key)).where(owner_criteria)
        return getattr(model, self.foreign_key).in_(owner_ids)

    def orm_criteria(self, model, binding: Binding):
        owner_model, owner_policy = self._owner()
        return self._owned(model, owner_model, owner_policy.orm_criteria(owner_model, binding))

    def write_criteria(self, model, binding: Binding):
        owner_model, owner_policy = self._owner()
        return self._owned(model, owner_model, owner_policy.write_criteria(owner_model, binding))

    def _exists(self, table: str, predicate: str) -> str:
        return (
            f'EXISTS (SELECT 1 FROM "{self.owner_table}" '
            f'WHERE "{self.owner_table}".{self.owner_key} = "{table}".{self.foreign_key} '
            f"AND ({predicate}))"
        )

    def using_sql(self, table: str) -> str:
        _, owner_policy = self._owner()
        return self._exists(table, owner_policy.using_sql(self.owner_table))

    def check_sql(self, table: str) -> str:
        _, owner_policy = self._owner()
        return self._exists(table, owner_policy.check_sql(self.owner_table))


class GlobalTable(RowPolicy):
    """Reference table readable by every tenant; writes gated by authorization only"""

    isolates = False
    has_tenant_column = False

    def orm_criteria(self, model, binding: Binding):
        return None


# table name -> (model, policy)
_REGISTRY: Dict[str, Tuple[type, RowPolicy]] = {}


def row_policy(policy: RowPolicy):
    """Class decorator declaring the row policy of a table model"""

    def decorator(model):
        _REGISTRY[model.__table__.name] = (model, policy)
        return model

    return decorator


def policy_for(model) -> Optional[RowPolicy]:
    entry = _REGISTRY.get(getattr(getattr(model, "__table__", None), "name", None))
    if entry is None or entry[0] is not model:
        return None
    return entry[1]


def registered_policies() -> List[Tuple[str, type, RowPolicy]]:
    return [(table, model, policy) for table, (model, policy) in _REGISTRY.items()]


def unprotected_tables(metadata: MetaData) -> List[str]:
    """Tables carrying a tenant_id column without an isolating policy"""
    unprotected = []
    for table in metadata.sorted_tables:
        if TENANT_COLUMN not in table.columns:
            continue
        entry = _REGISTRY.get(table.name)
        if entry is None or not entry[1].isolates:
            unprotected.append(table.name)
    return unprotected


def undeclared_tables(metadata: MetaData) -> List[str]:
    """Tables with no row policy declaration at all"""
    return [table.name for table in metadata.sorted_tables if table.name not in _REGISTRY]


# PostgreSQL DDL

def binder_functions_ddl() -> List[str]:
    """Helper functions called by the session binder"""
    settings = get_settings()
    tenant, bypass = settings.TENANT_SETTING_NAME, settings.BYPASS_SETTING_NAME
    return [
        f"""
        CREATE OR REPLACE FUNCTION set_tenant_context(tenant_id text)
        RETURNS void AS $$
        BEGIN
            PERFORM set_config('{tenant}', tenant_id, true);
        END;
        $$ LANGUAGE plpgsql
        """,
        f"""
        CREATE OR REPLACE FUNCTION clear_tenant_context()
        RETURNS void AS $$
        BEGIN
            PERFORM set_config('{tenant}', '', true);
        END;
        $$ LANGUAGE plpgsql
        """,
        f"""
        CREATE OR REPLACE FUNCTION enable_bypass_mode()
        RETURNS void AS $$
        BEGIN
            PERFORM set_config('{bypass}', 'true', true);
        END;
        $$ LANGUAGE plpgsql
        """,
        f"""
        CREATE OR REPLACE FUNCTION disable_bypass_mode()
        RETURNS void AS $$
        BEGIN
            PERFORM set_config('{bypass}', 'false', true);
        END;
        $$ LANGUAGE plpgsql
        """,
    ]


def reassignment_guard_ddl(table: str) -> List[str]:
    return [
        f'CREATE TRIGGER trg_{table}_tenant_immutable BEFORE UPDATE OF {TENANT_COLUMN} ON "{table}" '
        "FOR EACH ROW EXECUTE FUNCTION prevent_tenant_reassignment()",
    ]


REASSIGNMENT_FUNCTION_DDL = f"""
    CREATE OR REPLACE FUNCTION prevent_tenant_reassignment()
    RETURNS trigger AS $$
    BEGIN
        IF NEW.{TENANT_COLUMN} IS DISTINCT FROM OLD.{TENANT_COLUMN} THEN
            RAISE EXCEPTION 'tenant_id of a % row cannot be reassigned', TG_TABLE_NAME
                USING ERRCODE = 'check_violation';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
"""


def reserved_grant_guard_ddl(
    grants_table: str = "role_permissions",
    roles_table: str = "roles",
    permissions_table: str = "permissions",
    reserved_module: str = "tenants",
) -> List[str]:
    """Refuse tenant-management permissions on tenant-scoped roles at insert time"""
    return [
        f"""
        CREATE OR REPLACE FUNCTION forbid_reserved_tenant_grants()
        RETURNS trigger AS $$
        BEGIN
            IF EXISTS (
                SELECT 1
                FROM "{roles_table}" r, "{permissions_table}" p
                WHERE r.id = NEW.role_id
                  AND p.id = NEW.permission_id
                  AND r.{TENANT_COLUMN} IS NOT NULL
                  AND (p.module = '{reserved_module}' OR p.code = '*')
            ) THEN
                RAISE EXCEPTION 'tenant-scoped roles cannot hold {reserved_module} permissions'
                    USING ERRCODE = 'insufficient_privilege';
            END IF;
            RETURN NEW;
        END;
        $$ LANGUAGE plpgsql
        """,
        f'CREATE TRIGGER trg_{grants_table}_reserved BEFORE INSERT OR UPDATE ON "{grants_table}" '
        "FOR EACH ROW EXECUTE FUNCTION forbid_reserved_tenant_grants()",
    ]


def install_statements() -> List[str]:
    """Every statement needed to enable row-level security for registered tables"""
    statements = binder_functions_ddl() + [REASSIGNMENT_FUNCTION_DDL]
    for table, _model, policy in registered_policies():
        statements.extend(policy.enable_ddl(table))
        if policy.has_tenant_column and policy.isolates:
            statements.extend(reassignment_guard_ddl(table))
    statements.extend(reserved_grant_guard_ddl())
    return statements


def uninstall_statements() -> List[str]:
    statements = [
        'DROP TRIGGER IF EXISTS trg_role_permissions_reserved ON "role_permissions"',
        "DROP FUNCTION IF EXISTS forbid_reserved_tenant_grants()",
    ]
    for table, _model, policy in reversed(registered_policies()):
        if policy.has_tenant_column and policy.isolates:
            statements.append(f'DROP TRIGGER IF EXISTS trg_{table}_tenant_immutable ON "{table}"')
        statements.extend(policy.disable_ddl(table))
    statements.extend([
        "DROP FUNCTION IF EXISTS prevent_tenant_reassignment()",
        "DROP FUNCTION IF EXISTS disable_bypass_mode()",
        "DROP FUNCTION IF EXISTS enable_bypass_mode()",
        "DROP FUNCTION IF EXISTS clear_tenant_context()",
        "DROP FUNCTION IF EXISTS set_tenant_context(text)",
    ])
    return statements


# ORM query wrapper

def _select_options(binding: Binding, include_deleted: bool) -> list:
    options = []
    for _table, model, policy in registered_policies():
        criteria = policy.orm_criteria(model, binding)
        if criteria is not None:
            options.append(with_loader_criteria(model, criteria, include_aliases=True))
        if not include_deleted and hasattr(model, "deleted_at"):
            options.append(
                with_loader_criteria(model, model.deleted_at.is_(None), include_aliases=True)
            )
    return options


@event.listens_for(Session, "do_orm_execute")
def _enforce_row_policies(state):
    statement = state.statement
    binding = get_binding(state.session)

    if isinstance(statement, TextClause):
        if state.execution_options.get("allow_raw_sql") or (binding is not None and binding.bypass):
            return
        logger.error("unscoped_statement_refused", sql=str(statement)[:200])
        raise UnscopedStatement(
            "Raw SQL is not tenant-scoped; use ORM statements or allow_raw_sql=True"
        )

    if binding is None:
        logger.error("tenant_context_unbound", statement=type(statement).__name__)
        raise TenantContextUnbound("Session has no tenant binding; refusing to query")

    if state.is_select:
        if state.is_column_load:
            return
        include_deleted = bool(state.execution_options.get("include_deleted", False))
        state.statement = statement.options(*_select_options(binding, include_deleted))
        return

    if state.is_update or state.is_delete:
        mapper = state.bind_mapper
        policy = policy_for(mapper.class_) if mapper is not None else None
        if policy is None:
            return
        criteria = policy.write_criteria(mapper.class_, binding)
        if criteria is not None:
            state.statement = statement.where(criteria)
