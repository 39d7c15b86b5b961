"""
Tenant API endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlmodel import Session, select
from typing import List
from datetime import datetime
import structlog
import uuid

from trainhub.core.dependencies import get_current_principal, get_tenant_session, require_permissions
from trainhub.core.permissions import Permission
from trainhub.core.principal import Principal
from trainhub.models.tenant import Tenant
from trainhub.schemas.tenant import TenantCreate, TenantResponse, TenantUpdate
from trainhub.services.provisioning import ProvisioningError, register_tenant

logger = structlog.get_logger(__name__)
router = APIRouter()


def _get_or_404(session: Session, tenant_id: uuid.UUID) -> Tenant:
    tenant = session.get(Tenant, tenant_id)
    if not tenant:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found"
        )
    return tenant


@router.get("/", response_model=List[TenantResponse])
def list_tenants(
    skip: int = 0,
    limit: int = 100,
    principal: Principal = Depends(require_permissions(Permission.TENANTS_VIEW)),
    session: Session = Depends(get_tenant_session),
):
    """List all tenants"""
    return session.exec(
        select(Tenant).order_by(Tenant.created_at).offset(skip).limit(limit)
    ).all()


@router.post("/", response_model=TenantResponse, status_code=status.HTTP_201_CREATED)
def create_tenant(
    payload: TenantCreate,
    principal: Principal = Depends(require_permissions(Permission.TENANTS_CREATE)),
    session: Session = Depends(get_tenant_session),
):
    """Create a tenant with its default roles and first administrator"""
    try:
        tenant, _ = register_tenant(
            session,
            slug=payload.slug,
            company_name=payload.company_name,
            admin_email=payload.admin_email,
            admin_password=payload.admin_password,
            admin_first_name=payload.admin_first_name,
            admin_last_name=payload.admin_last_name,
            contact_phone=payload.contact_phone,
            plan=payload.subscription_plan,
        )
    except ProvisioningError as e:
        session.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    session.commit()
    logger.info("Tenant created", tenant_id=str(tenant.id), created_by=str(principal.user_id))
    return tenant


@router.get("/current", response_model=TenantResponse)
def get_current_tenant(
    principal: Principal = Depends(get_current_principal),
    session: Session = Depends(get_tenant_session),
):
    """Tenant of the authenticated user"""
    if principal.tenant_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="System users do not belong to a tenant"
        )
    return _get_or_404(session, principal.tenant_id)


@router.get("/{tenant_id}", response_model=TenantResponse)
def get_tenant(
    tenant_id: uuid.UUID,
    principal: Principal = Depends(require_permissions(Permission.TENANTS_VIEW)),
    session: Session = Depends(get_tenant_session),
):
    """Get tenant by ID"""
    return _get_or_404(session, tenant_id)


@router.patch("/{tenant_id}", response_model=TenantResponse)
def update_tenant(
    tenant_id: uuid.UUID,
    tenant_update: TenantUpdate,
    principal: Principal = Depends(require_permissions(Permission.TENANTS_UPDATE)),
    session: Session = Depends(get_tenant_session),
):
    """Update tenant"""
    db_tenant = _get_or_404(session, tenant_id)

    tenant_data = tenant_update.model_dump(exclude_unset=True)
    for key, value in tenant_data.items():
        setattr(db_tenant, key, value)

    db_tenant.updated_at = datetime.utcnow()
    session.add(db_tenant)
    session.commit()
    session.refresh(db_tenant)
    logger.info("Tenant updated", tenant_id=str(tenant_id))
    return db_tenant


@router.delete("/{tenant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_tenant(
    tenant_id: uuid.UUID,
    principal: Principal = Depends(require_permissions(Permission.TENANTS_DELETE)),
    session: Session = Depends(get_tenant_session),
):
    """Soft-delete a tenant; its users can no longer authenticate"""
    db_tenant = _get_or_404(session, tenant_id)

    now = datetime.utcnow()
    db_tenant.deleted_at = now
    db_tenant.updated_at = now
    db_tenant.is_active = False
    session.add(db_tenant)
    session.commit()
    logger.info("Tenant deleted", tenant_id=str(tenant_id), deleted_by=str(principal.user_id))
