"""
Pydantic schemas for tenants
"""

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import Optional
from datetime import datetime
import uuid

from trainhub.models.tenant import TenantPlan, TenantStatus


class TenantCreate(BaseModel):
    """Tenant created by a platform administrator, with its first admin user"""
    slug: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    company_name: str = Field(..., min_length=2, max_length=255)
    subscription_plan: TenantPlan = TenantPlan.STARTER
    admin_email: EmailStr
    admin_password: str = Field(..., min_length=8, max_length=100)
    admin_first_name: str = Field(..., min_length=1, max_length=100)
    admin_last_name: str = Field(..., min_length=1, max_length=100)
    contact_phone: Optional[str] = Field(default=None, max_length=50)


class TenantUpdate(BaseModel):
    company_name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    subscription_plan: Optional[TenantPlan] = None
    subscription_status: Optional[TenantStatus] = None
    max_users: Optional[int] = Field(default=None, ge=1)
    max_courses: Optional[int] = Field(default=None, ge=1)
    max_students: Optional[int] = Field(default=None, ge=1)
    contact_email: Optional[EmailStr] = None
    contact_phone: Optional[str] = Field(default=None, max_length=50)
    settings: Optional[dict] = None
    is_active: Optional[bool] = None


class TenantResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    slug: str
    company_name: str
    subscription_plan: TenantPlan
    subscription_status: TenantStatus
    max_users: int
    max_courses: int
    max_students: int
    trial_ends_at: Optional[datetime]
    contact_email: Optional[str]
    settings: Optional[dict]
    is_active: bool
    created_at: datetime
