"""
Authentication API endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Request, status
import structlog

from trainhub.core.database import system_session
from trainhub.core.dependencies import get_current_principal
from trainhub.core.identity import load_principal
from trainhub.core.principal import Principal
from trainhub.schemas.token import (
    ChangePasswordRequest,
    LoginRequest,
    LogoutRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from trainhub.schemas.user import PrincipalResponse
from trainhub.services import auth as auth_service
from trainhub.services.provisioning import ProvisioningError, register_tenant

logger = structlog.get_logger(__name__)
router = APIRouter()


def _client(request: Request):
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, request: Request):
    """Self-service sign-up: creates the organization on a trial and its administrator"""
    ip_address, user_agent = _client(request)
    with system_session() as session:
        try:
            tenant, admin = register_tenant(
                session,
                slug=payload.slug,
                company_name=payload.company_name,
                admin_email=payload.email,
                admin_password=payload.password,
                admin_first_name=payload.first_name,
                admin_last_name=payload.last_name,
                contact_phone=payload.phone,
            )
        except ProvisioningError as e:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

        principal = load_principal(session, admin.id, tenant.id)
        tokens = auth_service.issue_tokens(session, principal, ip_address, user_agent)
        session.commit()

    return tokens


@router.post("/login", response_model=TokenResponse)
def login(payload: LoginRequest, request: Request):
    """Exchange credentials for an access/refresh token pair"""
    ip_address, user_agent = _client(request)
    return auth_service.login(
        payload.email,
        payload.password,
        tenant_slug=payload.tenant_slug,
        ip_address=ip_address,
        user_agent=user_agent,
    )


@router.post("/refresh", response_model=TokenResponse)
def refresh(payload: RefreshRequest, request: Request):
    ip_address, user_agent = _client(request)
    return auth_service.refresh(payload.refresh_token, ip_address, user_agent)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    payload: LogoutRequest,
    principal: Principal = Depends(get_current_principal),
):
    auth_service.logout(principal, payload.refresh_token)


@router.post("/change-password", status_code=status.HTTP_204_NO_CONTENT)
def change_password(
    payload: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
):
    """Change password; every refresh session is revoked"""
    auth_service.change_password(principal, payload.current_password, payload.new_password)


@router.get("/me", response_model=PrincipalResponse)
def me(principal: Principal = Depends(get_current_principal)):
    return PrincipalResponse(
        user_id=principal.user_id,
        tenant_id=principal.tenant_id,
        email=principal.email,
        roles=sorted(principal.roles),
        permissions=sorted(principal.permissions),
        bypass_isolation=principal.bypass_isolation,
    )
