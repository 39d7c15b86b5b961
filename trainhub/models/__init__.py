from trainhub.models.base import TenantScopedBase
from trainhub.models.tenant import Tenant, TenantPlan, TenantStatus
from trainhub.models.subscription_plan import SubscriptionPlan
from trainhub.models.user import User
from trainhub.models.role import Permission, Role, RolePermission, UserRole
from trainhub.models.user_session import UserSession
from trainhub.models.course import Course, CourseSession, CourseStatus, CourseSessionStatus
