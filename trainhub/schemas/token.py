"""
Pydantic schemas for authentication and tokens
"""

from pydantic import BaseModel, Field, EmailStr
from typing import List, Optional
import uuid


class LoginRequest(BaseModel):
    """Login schema; omit tenant_slug to sign in as a system user"""
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=100)
    tenant_slug: Optional[str] = Field(default=None, max_length=100)


class RegisterRequest(BaseModel):
    """Self-service organization sign-up"""
    company_name: str = Field(..., min_length=2, max_length=255)
    slug: str = Field(..., min_length=3, max_length=100, pattern=r"^[a-z0-9][a-z0-9-]*$")
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, max_length=50)


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    """Revoke one refresh session, or every session of the user when omitted"""
    refresh_token: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=8, max_length=100)


class TokenUser(BaseModel):
    """Identity summary returned with issued tokens"""
    id: uuid.UUID
    email: str
    tenant_id: Optional[uuid.UUID]
    roles: List[str]


class TokenResponse(BaseModel):
    """Token response"""
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(..., description="Access token lifetime in seconds")
    user: TokenUser
