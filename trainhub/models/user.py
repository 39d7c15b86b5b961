"""
User model with tenant scoping
"""

from sqlmodel import Field
from sqlalchemy import UniqueConstraint
from datetime import datetime
from typing import Optional
import uuid

from trainhub.core.row_policies import TenantColumn, row_policy
from trainhub.models.base import TenantScopedBase


@row_policy(TenantColumn())
class User(TenantScopedBase, table=True):
    """User model with tenant isolation; system users have no tenant"""

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),)
    __tenant_nullable__ = True

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tenants.id", index=True)

    # Authentication
    email: str = Field(index=True, nullable=False, max_length=255)
    password_hash: str = Field(nullable=False)

    # Profile
    first_name: str = Field(nullable=False, max_length=100)
    last_name: str = Field(nullable=False, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)

    # Status
    is_active: bool = Field(default=True, index=True)
    is_system_user: bool = Field(default=False)
    last_login_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
