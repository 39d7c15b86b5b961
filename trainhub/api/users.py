"""
Users API endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, EmailStr, Field
from sqlmodel import Session, select
from typing import List
import structlog

from trainhub.core.dependencies import get_tenant_session, require_permissions
from trainhub.core.permissions import Permission
from trainhub.core.principal import Principal
from trainhub.models.user import User
from trainhub.schemas.user import UserResponse
from trainhub.services.provisioning import ProvisioningError, create_tenant_user

logger = structlog.get_logger(__name__)
router = APIRouter()


class UserCreate(BaseModel):
    """User created by a tenant administrator"""
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=100)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    roles: List[str] = Field(default_factory=list)


@router.get("/", response_model=List[UserResponse])
def list_users(
    skip: int = 0,
    limit: int = 100,
    principal: Principal = Depends(require_permissions(Permission.USERS_VIEW)),
    session: Session = Depends(get_tenant_session),
):
    """List users of the current tenant"""
    return session.exec(
        select(User).order_by(User.created_at).offset(skip).limit(limit)
    ).all()


@router.post("/", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    principal: Principal = Depends(require_permissions(Permission.USERS_CREATE, Permission.USERS_MANAGE_ROLES)),
    session: Session = Depends(get_tenant_session),
):
    """Create a user in the caller's tenant"""
    if principal.tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="System users create tenant users through tenant provisioning"
        )
    try:
        user = create_tenant_user(
            session,
            principal.tenant_id,
            email=payload.email,
            password=payload.password,
            first_name=payload.first_name,
            last_name=payload.last_name,
            role_codes=payload.roles,
        )
    except ProvisioningError as e:
        session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    session.commit()
    logger.info("User created", user_id=str(user.id))
    return user
