"""
RBAC (Role-Based Access Control) permission system

Permission codes have the form ``<module>:<action>``. The authorization
decision is a pure function of the principal's materialized permission set
and the required capability; role objects are never inspected at decision
time.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set, Tuple

import structlog

from trainhub.core.errors import Forbidden, Unauthenticated
from trainhub.core.principal import Principal

logger = structlog.get_logger(__name__)

WILDCARD = "*"
TENANT_MANAGEMENT_MODULE = "tenants"


class Permission(str, Enum):
    """Permission definitions"""
    # Courses
    COURSES_VIEW = "courses:view"
    COURSES_CREATE = "courses:create"
    COURSES_UPDATE = "courses:update"
    COURSES_DELETE = "courses:delete"
    COURSES_PUBLISH = "courses:publish"

    # Course sessions
    SESSIONS_VIEW = "sessions:view"
    SESSIONS_CREATE = "sessions:create"
    SESSIONS_UPDATE = "sessions:update"
    SESSIONS_DELETE = "sessions:delete"
    SESSIONS_MANAGE_STATUS = "sessions:manage-status"

    # Enrollments
    ENROLLMENTS_VIEW = "enrollments:view"
    ENROLLMENTS_CREATE = "enrollments:create"
    ENROLLMENTS_UPDATE = "enrollments:update"
    ENROLLMENTS_DELETE = "enrollments:delete"
    ENROLLMENTS_MANAGE_STATUS = "enrollments:manage-status"
    ENROLLMENTS_CERTIFICATE = "enrollments:certificate"

    # Students
    STUDENTS_VIEW = "students:view"
    STUDENTS_CREATE = "students:create"
    STUDENTS_UPDATE = "students:update"
    STUDENTS_DELETE = "students:delete"

    # Users
    USERS_VIEW = "users:view"
    USERS_CREATE = "users:create"
    USERS_UPDATE = "users:update"
    USERS_DELETE = "users:delete"
    USERS_MANAGE_ROLES = "users:manage-roles"
    USERS_MANAGE_STATUS = "users:manage-status"

    # Instructors
    INSTRUCTORS_VIEW = "instructors:view"
    INSTRUCTORS_CREATE = "instructors:create"
    INSTRUCTORS_UPDATE = "instructors:update"
    INSTRUCTORS_DELETE = "instructors:delete"

    # Locations
    LOCATIONS_VIEW = "locations:view"
    LOCATIONS_CREATE = "locations:create"
    LOCATIONS_UPDATE = "locations:update"
    LOCATIONS_DELETE = "locations:delete"

    # Payments
    PAYMENTS_VIEW = "payments:view"
    PAYMENTS_CREATE = "payments:create"
    PAYMENTS_UPDATE = "payments:update"
    PAYMENTS_DELETE = "payments:delete"
    PAYMENTS_REFUND = "payments:refund"

    # Time tracking
    TIME_TRACKING_VIEW = "time-tracking:view"
    TIME_TRACKING_CREATE = "time-tracking:create"
    TIME_TRACKING_UPDATE = "time-tracking:update"
    TIME_TRACKING_DELETE = "time-tracking:delete"
    TIME_TRACKING_APPROVE = "time-tracking:approve"
    TIME_TRACKING_REJECT = "time-tracking:reject"

    # Dashboard and reports
    DASHBOARD_VIEW = "dashboard:view"
    REPORTS_VIEW = "reports:view"
    REPORTS_EXPORT = "reports:export"

    # Tenant management (system roles only)
    TENANTS_VIEW = "tenants:view"
    TENANTS_CREATE = "tenants:create"
    TENANTS_UPDATE = "tenants:update"
    TENANTS_DELETE = "tenants:delete"
    TENANTS_MANAGE_SUBSCRIPTION = "tenants:manage-subscription"
    TENANTS_VIEW_USAGE = "tenants:view-usage"
    TENANTS_BYPASS_ISOLATION = "tenants:bypass-isolation"

    # Grants every permission, present and future
    ALL = WILDCARD


class SystemRole(str, Enum):
    """Role codes created by provisioning"""
    SUPER_ADMIN = "SUPER_ADMIN"
    TENANT_ADMIN = "TENANT_ADMIN"
    MANAGER = "MANAGER"
    INSTRUCTOR = "INSTRUCTOR"


def permission_module(code: str) -> str:
    """Module part of a permission code; the wildcard has no module"""
    module, _, _ = code.partition(":")
    return module


def is_reserved_permission(code: str) -> bool:
    """Reserved codes may only be held by system-wide roles"""
    return code == WILDCARD or permission_module(code) == TENANT_MANAGEMENT_MODULE


def _describe(code: str) -> str:
    module, _, action = code.partition(":")
    return f"{action.replace('-', ' ').capitalize()} {module.replace('-', ' ')}"


def permission_catalog() -> List[Dict[str, str]]:
    """Rows for the permission table, in declaration order"""
    catalog = []
    for permission in Permission:
        code = permission.value
        if code == WILDCARD:
            catalog.append({
                "code": code,
                "name": "All Permissions",
                "module": WILDCARD,
                "description": "Every permission of every module",
            })
            continue
        catalog.append({
            "code": code,
            "name": _describe(code),
            "module": permission_module(code),
            "description": _describe(code),
        })
    return catalog


TENANT_PERMISSIONS: FrozenSet[str] = frozenset(
    p.value for p in Permission if not is_reserved_permission(p.value)
)

# Role permission templates applied at provisioning time
ROLE_PERMISSIONS: Dict[SystemRole, FrozenSet[str]] = {
    # Super admins hold the whole catalog plus the wildcard
    SystemRole.SUPER_ADMIN: frozenset(p.value for p in Permission),
    # Tenant admins hold everything except tenant management
    SystemRole.TENANT_ADMIN: TENANT_PERMISSIONS,
    SystemRole.MANAGER: frozenset({
        Permission.COURSES_VIEW.value,
        Permission.COURSES_CREATE.value,
        Permission.COURSES_UPDATE.value,
        Permission.COURSES_PUBLISH.value,
        Permission.SESSIONS_VIEW.value,
        Permission.SESSIONS_CREATE.value,
        Permission.SESSIONS_UPDATE.value,
        Permission.SESSIONS_MANAGE_STATUS.value,
        Permission.ENROLLMENTS_VIEW.value,
        Permission.ENROLLMENTS_CREATE.value,
        Permission.ENROLLMENTS_UPDATE.value,
        Permission.STUDENTS_VIEW.value,
        Permission.USERS_VIEW.value,
        Permission.DASHBOARD_VIEW.value,
        Permission.REPORTS_VIEW.value,
    }),
    SystemRole.INSTRUCTOR: frozenset({
        Permission.COURSES_VIEW.value,
        Permission.SESSIONS_VIEW.value,
        Permission.SESSIONS_MANAGE_STATUS.value,
        Permission.ENROLLMENTS_VIEW.value,
        Permission.TIME_TRACKING_VIEW.value,
        Permission.TIME_TRACKING_CREATE.value,
    }),
}


def materialize_permissions(
    grants: Iterable[Tuple[Optional[object], str]],
    principal_tenant_id: Optional[object],
) -> FrozenSet[str]:
    """
    Build the permission set from (role tenant id, permission code) pairs.

    Reserved codes are dropped when they come from a tenant-scoped role, and
    dropped altogether for principals that belong to a tenant, so a stray row
    in the association table can never hand tenant management to a tenant.
    """
    permissions: Set[str] = set()
    for role_tenant_id, code in grants:
        if is_reserved_permission(code):
            if role_tenant_id is not None or principal_tenant_id is not None:
                logger.warning(
                    "reserved_permission_discarded",
                    permission=code,
                    role_tenant_id=str(role_tenant_id) if role_tenant_id else None,
                )
                continue
        permissions.add(code)
    return frozenset(permissions)


def has_permission(required: str, granted: Iterable[str]) -> bool:
    """Check a single permission code against a granted set"""
    granted = granted if isinstance(granted, (set, frozenset)) else set(granted)
    if WILDCARD in granted or required in granted:
        return True
    return f"{permission_module(required)}:*" in granted


class CapabilityKind(str, Enum):
    ALL_PERMISSIONS = "all_permissions"
    ANY_PERMISSION = "any_permission"
    ANY_ROLE = "any_role"


@dataclass(frozen=True)
class Capability:
    """A required capability: a set of permission codes or acceptable role codes"""

    kind: CapabilityKind
    codes: Tuple[str, ...]

    @classmethod
    def all_permissions(cls, *codes) -> "Capability":
        return cls(CapabilityKind.ALL_PERMISSIONS, tuple(_code(c) for c in codes))

    @classmethod
    def any_permission(cls, *codes) -> "Capability":
        return cls(CapabilityKind.ANY_PERMISSION, tuple(_code(c) for c in codes))

    @classmethod
    def any_role(cls, *codes) -> "Capability":
        return cls(CapabilityKind.ANY_ROLE, tuple(_code(c) for c in codes))

    def describe(self) -> str:
        joiner = " and " if self.kind == CapabilityKind.ALL_PERMISSIONS else " or "
        label = "role" if self.kind == CapabilityKind.ANY_ROLE else "permission"
        return f"{label} {joiner.join(self.codes)}"


def _code(value) -> str:
    return value.value if isinstance(value, Enum) else str(value)


class Decision(str, Enum):
    ALLOW = "allow"
    DENY = "deny"

    def __bool__(self) -> bool:
        return self is Decision.ALLOW


def authorize(principal: Principal, capability: Capability) -> Decision:
    """Decide whether the principal holds the capability"""
    if not capability.codes:
        return Decision.ALLOW

    if capability.kind == CapabilityKind.ANY_ROLE:
        allowed = any(code in principal.roles for code in capability.codes)
    elif capability.kind == CapabilityKind.ALL_PERMISSIONS:
        allowed = all(has_permission(code, principal.permissions) for code in capability.codes)
    else:
        allowed = any(has_permission(code, principal.permissions) for code in capability.codes)

    return Decision.ALLOW if allowed else Decision.DENY


def check(principal: Optional[Principal], capability: Capability) -> Principal:
    """Raise Unauthenticated or Forbidden unless the capability is held"""
    if principal is None:
        raise Unauthenticated()

    if not authorize(principal, capability):
        logger.info(
            "authorization_denied",
            user_id=str(principal.user_id),
            required=capability.describe(),
        )
        raise Forbidden(f"Requires {capability.describe()}")

    return principal
