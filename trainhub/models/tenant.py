"""
Tenant model - Multi-tenancy foundation
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import Column, JSON
from datetime import datetime
from typing import Optional
from enum import Enum
import uuid

from trainhub.core.row_policies import GlobalTable, row_policy


class TenantPlan(str, Enum):
    """Subscription plans"""
    STARTER = "starter"
    PROFESSIONAL = "professional"
    ENTERPRISE = "enterprise"


class TenantStatus(str, Enum):
    """Subscription lifecycle"""
    TRIAL = "trial"
    ACTIVE = "active"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


@row_policy(GlobalTable())
class Tenant(SQLModel, table=True):
    """Tenant model for multi-tenant architecture"""

    __tablename__ = "tenants"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    slug: str = Field(unique=True, index=True, max_length=100, description="Unique tenant identifier used at login")
    company_name: str = Field(max_length=255)

    # Subscription
    subscription_plan: TenantPlan = Field(default=TenantPlan.STARTER)
    subscription_status: TenantStatus = Field(default=TenantStatus.TRIAL, index=True)
    max_users: int = Field(default=10)
    max_courses: int = Field(default=50)
    max_students: int = Field(default=1000)
    trial_ends_at: Optional[datetime] = None

    # Contact
    contact_email: Optional[str] = Field(default=None, max_length=255)
    contact_phone: Optional[str] = Field(default=None, max_length=50)

    # Feature flags and custom configuration
    settings: Optional[dict] = Field(default_factory=dict, sa_column=Column(JSON))

    # Status
    is_active: bool = Field(default=True, index=True)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    @property
    def is_usable(self) -> bool:
        """Tenant may authenticate users"""
        return (
            self.is_active
            and self.deleted_at is None
            and self.subscription_status not in (TenantStatus.SUSPENDED, TenantStatus.CANCELLED, TenantStatus.EXPIRED)
        )
