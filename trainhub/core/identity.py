"""
Identity and claim resolution

Turns a bearer credential into a ``Principal``. Signature and expiry are
verified first; the user, tenant and role/permission rows are then re-read
from the database on every request, so a deactivated user or a revoked
permission takes effect on the very next request.
"""

from typing import Optional
import uuid

import structlog
from sqlmodel import Session, select

from trainhub.core.auth import decode_access_token
from trainhub.core.database import session_for_tenant, system_session
from trainhub.core.errors import PrincipalNotFound
from trainhub.core.permissions import Permission as PermissionCode
from trainhub.core.permissions import has_permission, materialize_permissions
from trainhub.core.principal import Principal
from trainhub.models import Permission, Role, RolePermission, Tenant, User, UserRole

logger = structlog.get_logger(__name__)


def resolve_principal(token: str) -> Principal:
    """Verify an access token and build the acting principal"""
    claims = decode_access_token(token)
    user_id: uuid.UUID = claims["sub"]
    tenant_id: Optional[uuid.UUID] = claims["tenant_id"]

    # Lookups for a tenant credential can only see that tenant's rows
    opener = system_session() if tenant_id is None else session_for_tenant(tenant_id)
    with opener as session:
        return load_principal(session, user_id, tenant_id)


def load_principal(session: Session, user_id: uuid.UUID, tenant_id: Optional[uuid.UUID]) -> Principal:
    """Build a principal from the database; raises PrincipalNotFound"""
    user = session.get(User, user_id)
    if user is None or not user.is_active or user.tenant_id != tenant_id:
        logger.info("principal_rejected", user_id=str(user_id), reason="user")
        raise PrincipalNotFound()

    if tenant_id is None:
        if not user.is_system_user:
            logger.warning("principal_rejected", user_id=str(user_id), reason="tenantless_user")
            raise PrincipalNotFound()
    else:
        tenant = session.get(Tenant, tenant_id)
        if tenant is None or not tenant.is_usable:
            logger.info("principal_rejected", user_id=str(user_id), reason="tenant")
            raise PrincipalNotFound()

    rows = session.exec(
        select(Role.tenant_id, Role.code, Permission.code)
        .join(UserRole, UserRole.role_id == Role.id)
        .outerjoin(RolePermission, RolePermission.role_id == Role.id)
        .outerjoin(Permission, Permission.id == RolePermission.permission_id)
        .where(UserRole.user_id == user.id, Role.is_active == True)  # noqa: E712
    ).all()

    roles = frozenset(role_code for _, role_code, _ in rows)
    permissions = materialize_permissions(
        ((role_tenant_id, code) for role_tenant_id, _, code in rows if code is not None),
        tenant_id,
    )
    bypass = tenant_id is None and has_permission(
        PermissionCode.TENANTS_BYPASS_ISOLATION.value, permissions
    )

    logger.debug(
        "principal_resolved",
        user_id=str(user.id),
        roles=sorted(roles),
        permission_count=len(permissions),
        bypass=bypass,
    )
    return Principal(
        user_id=user.id,
        tenant_id=tenant_id,
        email=user.email,
        roles=roles,
        permissions=permissions,
        bypass_isolation=bypass,
    )
