"""
Roles, permissions and their assignments
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import UniqueConstraint, event
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import uuid

import structlog

from trainhub.core.errors import ReservedPermissionError, TenantMismatch
from trainhub.core.permissions import is_reserved_permission
from trainhub.core.row_policies import GlobalTable, OwnedBy, TenantColumn, TenantOrGlobal, row_policy
from trainhub.core.session_binder import get_binding
from trainhub.models.base import TenantScopedBase

logger = structlog.get_logger(__name__)


@row_policy(GlobalTable())
class Permission(SQLModel, table=True):
    """Permission catalog entry, code of the form <module>:<action>"""

    __tablename__ = "permissions"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    code: str = Field(unique=True, index=True, max_length=100)
    name: str = Field(max_length=150)
    module: str = Field(index=True, max_length=50)
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


@row_policy(TenantOrGlobal())
class Role(TenantScopedBase, table=True):
    """Role owned by a tenant, or a system role when tenant_id is NULL"""

    __tablename__ = "roles"
    __table_args__ = (UniqueConstraint("tenant_id", "code", name="uq_roles_tenant_code"),)
    __tenant_nullable__ = True

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tenants.id", index=True)

    name: str = Field(max_length=100)
    code: str = Field(index=True, max_length=50)
    description: Optional[str] = None

    is_system_role: bool = Field(default=False)
    is_active: bool = Field(default=True, index=True)


@row_policy(OwnedBy("roles", "role_id"))
class RolePermission(SQLModel, table=True):
    """Grant of a permission to a role; isolated through the owning role"""

    __tablename__ = "role_permissions"

    role_id: uuid.UUID = Field(foreign_key="roles.id", primary_key=True)
    permission_id: uuid.UUID = Field(foreign_key="permissions.id", primary_key=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)


@row_policy(TenantColumn())
class UserRole(TenantScopedBase, table=True):
    """Assignment of a role to a user; duplicates the user's tenant_id"""

    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id", name="uq_user_roles_user_role"),)
    __tenant_nullable__ = True

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tenants.id", index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    role_id: uuid.UUID = Field(foreign_key="roles.id", index=True)


def _pending_or_get(session: Session, model, key):
    for obj in session.new:
        if isinstance(obj, model) and obj.id == key:
            return obj
    with session.no_autoflush:
        return session.get(model, key)


@event.listens_for(Session, "before_flush")
def _guard_role_grants(session, flush_context, instances):
    """System role grants change only in bypass; tenant roles never get tenant-management permissions"""
    added = [obj for obj in session.new if isinstance(obj, RolePermission)]
    removed = [obj for obj in session.deleted if isinstance(obj, RolePermission)]
    if not (added or removed):
        return

    binding = get_binding(session)
    bypass = binding is not None and binding.bypass
    for grant in added + removed:
        role = _pending_or_get(session, Role, grant.role_id)
        if role is None or (role.tenant_id is None and not bypass):
            logger.error("tenant_invariant_violation", error="TenantMismatch", entity="RolePermission")
            raise TenantMismatch("Grants of this role cannot be changed by the current tenant")

    for grant in added:
        role = _pending_or_get(session, Role, grant.role_id)

        permission = _pending_or_get(session, Permission, grant.permission_id)
        if permission is None:
            raise LookupError(f"Permission {grant.permission_id} does not exist")

        if role.tenant_id is not None and is_reserved_permission(permission.code):
            logger.error(
                "reserved_permission_grant_refused",
                role_code=role.code,
                permission=permission.code,
                role_tenant_id=str(role.tenant_id),
                bypass=bypass,
            )
            raise ReservedPermissionError(
                f"Permission {permission.code} can only be granted to system roles"
            )
