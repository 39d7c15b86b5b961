"""
Pydantic schemas for users
"""

from pydantic import BaseModel, ConfigDict
from typing import List, Optional
from datetime import datetime
import uuid


class UserResponse(BaseModel):
    """User response model"""
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    tenant_id: Optional[uuid.UUID]
    email: str
    first_name: str
    last_name: str
    is_active: bool
    is_system_user: bool
    created_at: datetime
    last_login_at: Optional[datetime]


class PrincipalResponse(BaseModel):
    """The acting principal as resolved for this request"""
    user_id: uuid.UUID
    tenant_id: Optional[uuid.UUID]
    email: str
    roles: List[str]
    permissions: List[str]
    bypass_isolation: bool
