"""
Authentication and authorization dependencies for FastAPI
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session
from typing import Iterator, Optional
import uuid
import structlog

from trainhub.core.database import tenant_session
from trainhub.core.errors import Unauthenticated
from trainhub.core.identity import resolve_principal
from trainhub.core.permissions import Capability, check
from trainhub.core.principal import Principal
from trainhub.core.tenant_context import bind_principal

logger = structlog.get_logger(__name__)
security = HTTPBearer(auto_error=False)


def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Principal:
    """Resolve the bearer credential and bind the principal to the request context"""
    if credentials is None:
        raise Unauthenticated("Not authenticated")

    principal = resolve_principal(credentials.credentials)
    bind_principal(principal)
    logger.debug("User authenticated", user_id=str(principal.user_id))
    return principal


def get_current_user(principal: Principal = Depends(get_current_principal)) -> Principal:
    """The authenticated principal"""
    return principal


def get_current_tenant_id(
    principal: Principal = Depends(get_current_principal),
) -> Optional[uuid.UUID]:
    """Tenant of the authenticated principal; None for system users"""
    return principal.tenant_id


def get_tenant_session(
    principal: Principal = Depends(get_current_principal),
) -> Iterator[Session]:
    """Database session bound to the authenticated principal's tenant"""
    with tenant_session() as session:
        yield session


def require_permissions(*permissions):
    """Dependency factory: every listed permission is required"""
    capability = Capability.all_permissions(*permissions)

    def check_permissions(principal: Principal = Depends(get_current_principal)) -> Principal:
        return check(principal, capability)

    return check_permissions


def require_any_permission(*permissions):
    """Dependency factory: at least one listed permission is required"""
    capability = Capability.any_permission(*permissions)

    def check_any_permission(principal: Principal = Depends(get_current_principal)) -> Principal:
        return check(principal, capability)

    return check_any_permission


def require_roles(*roles):
    """Dependency factory: at least one listed role is required"""
    capability = Capability.any_role(*roles)

    def check_roles(principal: Principal = Depends(get_current_principal)) -> Principal:
        return check(principal, capability)

    return check_roles
