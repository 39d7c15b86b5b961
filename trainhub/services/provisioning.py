"""
Platform and tenant provisioning

Creates the permission catalog, the system-wide SUPER_ADMIN role, new tenants
with their default roles, and role/permission assignments. Functions flush
but never commit; the caller owns the transaction.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, Optional, Tuple

import structlog
from sqlmodel import Session, select

from trainhub.core.auth import hash_password
from trainhub.core.config import get_settings
from trainhub.core.errors import Forbidden, ReservedPermissionError
from trainhub.core.permissions import ROLE_PERMISSIONS, SystemRole, is_reserved_permission, permission_catalog
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

logger = structlog.get_logger(__name__)
settings = get_settings()

ROLE_NAMES = {
    SystemRole.SUPER_ADMIN: ("Super Administrator", "Full access to every tenant and the platform"),
    SystemRole.TENANT_ADMIN: ("Tenant Administrator", "Full access to tenant resources"),
    SystemRole.MANAGER: ("Manager", "Manages courses, sessions and enrollments"),
    SystemRole.INSTRUCTOR: ("Instructor", "Runs course sessions and tracks time"),
}

# Roles created for every new tenant
TENANT_ROLE_TEMPLATES = (SystemRole.TENANT_ADMIN, SystemRole.MANAGER, SystemRole.INSTRUCTOR)

DEFAULT_PLANS = (
    {"code": TenantPlan.STARTER.value, "name": "Starter", "max_users": 10, "max_courses": 50,
     "max_students": 1000, "price_monthly": Decimal("49.00")},
    {"code": TenantPlan.PROFESSIONAL.value, "name": "Professional", "max_users": 50, "max_courses": 250,
     "max_students": 10000, "price_monthly": Decimal("149.00")},
    {"code": TenantPlan.ENTERPRISE.value, "name": "Enterprise", "max_users": 500, "max_courses": 5000,
     "max_students": 100000, "price_monthly": Decimal("499.00")},
)


class ProvisioningError(Exception):
    """Provisioning request conflicts with existing data"""


def bootstrap_permissions(session: Session) -> Dict[str, Permission]:
    """Insert missing catalog permissions; returns every permission by code"""
    existing = {p.code: p for p in session.exec(select(Permission)).all()}
    created = 0
    for entry in permission_catalog():
        if entry["code"] in existing:
            continue
        permission = Permission(**entry)
        session.add(permission)
        existing[permission.code] = permission
        created += 1
    session.flush()
    if created:
        logger.info("permissions_bootstrapped", created=created)
    return existing


def seed_subscription_plans(session: Session) -> Dict[str, SubscriptionPlan]:
    existing = {p.code: p for p in session.exec(select(SubscriptionPlan)).all()}
    for entry in DEFAULT_PLANS:
        if entry["code"] not in existing:
            plan = SubscriptionPlan(**entry)
            session.add(plan)
            existing[plan.code] = plan
    session.flush()
    return existing


def grant_permission(session: Session, role: Role, code: str) -> None:
    """Grant one permission to a role; idempotent"""
    if role.tenant_id is not None and is_reserved_permission(code):
        logger.warning("reserved_permission_grant_refused", role_code=role.code, permission=code)
        raise ReservedPermissionError(f"Permission {code} can only be granted to system roles")

    permission = session.exec(select(Permission).where(Permission.code == code)).first()
    if permission is None:
        raise ProvisioningError(f"Unknown permission {code}")

    if session.get(RolePermission, (role.id, permission.id)) is None:
        session.add(RolePermission(role_id=role.id, permission_id=permission.id))
        session.flush()


def create_role(
    session: Session,
    tenant_id,
    code: str,
    name: str,
    permissions: Iterable[str] = (),
    description: Optional[str] = None,
    is_system_role: bool = False,
) -> Role:
    role = Role(
        tenant_id=tenant_id,
        code=code,
        name=name,
        description=description,
        is_system_role=is_system_role,
    )
    session.add(role)
    session.flush()
    for permission in sorted(permissions):
        grant_permission(session, role, permission)
    return role


def ensure_super_admin_role(session: Session) -> Role:
    """System-wide SUPER_ADMIN role holding the whole catalog and the wildcard"""
    bootstrap_permissions(session)
    role = session.exec(
        select(Role).where(Role.code == SystemRole.SUPER_ADMIN.value, Role.tenant_id == None)  # noqa: E711
    ).first()
    if role is None:
        name, description = ROLE_NAMES[SystemRole.SUPER_ADMIN]
        role = create_role(
            session,
            None,
            SystemRole.SUPER_ADMIN.value,
            name,
            description=description,
            is_system_role=True,
        )
        logger.info("super_admin_role_created", role_id=str(role.id))
    for code in ROLE_PERMISSIONS[SystemRole.SUPER_ADMIN]:
        grant_permission(session, role, code)
    return role


def bootstrap_platform(session: Session) -> Role:
    """Permission catalog, plan catalog and SUPER_ADMIN role"""
    seed_subscription_plans(session)
    return ensure_super_admin_role(session)


def assign_role(session: Session, user: User, role: Role) -> UserRole:
    """Assign a role to a user of the same tenant; idempotent"""
    if role.tenant_id is None and user.tenant_id is not None:
        raise Forbidden("System roles cannot be assigned to tenant users")
    if role.tenant_id is not None and role.tenant_id != user.tenant_id:
        raise Forbidden("Role belongs to another tenant")

    existing = session.exec(
        select(UserRole).where(UserRole.user_id == user.id, UserRole.role_id == role.id)
    ).first()
    if existing is not None:
        return existing

    user_role = UserRole(tenant_id=user.tenant_id, user_id=user.id, role_id=role.id)
    session.add(user_role)
    session.flush()
    return user_role


def create_super_admin(
    session: Session,
    email: str,
    password: str,
    first_name: str = "Super",
    last_name: str = "Admin",
) -> User:
    """Create a tenantless system user holding SUPER_ADMIN"""
    role = ensure_super_admin_role(session)
    existing = session.exec(
        select(User).where(User.email == email, User.tenant_id == None)  # noqa: E711
    ).first()
    if existing is not None:
        raise ProvisioningError(f"System user {email} already exists")

    user = User(
        tenant_id=None,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        is_system_user=True,
    )
    session.add(user)
    session.flush()
    assign_role(session, user, role)
    logger.info("super_admin_created", user_id=str(user.id))
    return user


def register_tenant(
    session: Session,
    slug: str,
    company_name: str,
    admin_email: str,
    admin_password: str,
    admin_first_name: str,
    admin_last_name: str,
    contact_phone: Optional[str] = None,
    plan: TenantPlan = TenantPlan.STARTER,
) -> Tuple[Tenant, User]:
    """
    Create a tenant on a trial, its default roles and its first administrator.

    Must run in a session with isolation bypassed: the tenant does not exist
    yet, so no tenant binding could see it.
    """
    slug = slug.strip().lower()
    conflict = session.exec(
        select(Tenant).where(Tenant.slug == slug).execution_options(include_deleted=True)
    ).first()
    if conflict is not None:
        raise ProvisioningError(f"Organization with slug '{slug}' already exists")

    plan_row = session.exec(select(SubscriptionPlan).where(SubscriptionPlan.code == plan.value)).first()

    tenant = Tenant(
        slug=slug,
        company_name=company_name,
        contact_email=admin_email,
        contact_phone=contact_phone,
        subscription_plan=plan,
        subscription_status=TenantStatus.TRIAL,
        trial_ends_at=datetime.utcnow() + timedelta(days=settings.TRIAL_PERIOD_DAYS),
    )
    if plan_row is not None:
        tenant.max_users = plan_row.max_users
        tenant.max_courses = plan_row.max_courses
        tenant.max_students = plan_row.max_students
    session.add(tenant)
    session.flush()

    bootstrap_permissions(session)
    roles = {}
    for template in TENANT_ROLE_TEMPLATES:
        name, description = ROLE_NAMES[template]
        roles[template] = create_role(
            session,
            tenant.id,
            template.value,
            name,
            ROLE_PERMISSIONS[template],
            description=description,
        )

    admin = User(
        tenant_id=tenant.id,
        email=admin_email,
        password_hash=hash_password(admin_password),
        first_name=admin_first_name,
        last_name=admin_last_name,
    )
    session.add(admin)
    session.flush()
    assign_role(session, admin, roles[SystemRole.TENANT_ADMIN])

    logger.info("tenant_registered", tenant_id=str(tenant.id), slug=slug)
    return tenant, admin


def create_tenant_user(
    session: Session,
    tenant_id,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    role_codes: Iterable[str] = (),
) -> User:
    """Create a user in a tenant and assign it tenant roles by code"""
    existing = session.exec(
        select(User).where(User.tenant_id == tenant_id, User.email == email)
    ).first()
    if existing is not None:
        raise ProvisioningError("Email already registered")

    user = User(
        tenant_id=tenant_id,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
    )
    session.add(user)
    session.flush()

    for code in role_codes:
        role = session.exec(
            select(Role).where(Role.tenant_id == tenant_id, Role.code == code)
        ).first()
        if role is None:
            raise ProvisioningError(f"Unknown role {code}")
        assign_role(session, user, role)
    return user
