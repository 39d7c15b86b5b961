"""
Refresh-credential sessions
"""

from sqlmodel import Field
from datetime import datetime
from typing import Optional
import uuid

from trainhub.core.row_policies import TenantColumn, row_policy
from trainhub.models.base import TenantScopedBase


@row_policy(TenantColumn())
class UserSession(TenantScopedBase, table=True):
    """One issued refresh token; rotated on refresh and revoked on logout"""

    __tablename__ = "user_sessions"
    __tenant_nullable__ = True

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    tenant_id: Optional[uuid.UUID] = Field(default=None, foreign_key="tenants.id", index=True)

    user_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    refresh_token_hash: str = Field(unique=True, index=True, max_length=64)
    expires_at: datetime
    is_revoked: bool = Field(default=False)
    revoked_at: Optional[datetime] = None

    # Client
    ip_address: Optional[str] = Field(default=None, max_length=45)
    user_agent: Optional[str] = Field(default=None, max_length=500)

    @property
    def is_valid(self) -> bool:
        return not self.is_revoked and self.expires_at > datetime.utcnow()
