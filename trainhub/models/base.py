"""
Tenant-scoped base model and the entity invariant guard
"""

from sqlmodel import Field, SQLModel
from sqlalchemy import event, inspect
from sqlalchemy.orm import Session
from datetime import datetime
from typing import Optional
import uuid

import structlog

from trainhub.core.errors import (
    MissingTenantId,
    TenantContextUnbound,
    TenantMismatch,
    TenantReassignment,
)
from trainhub.core.session_binder import Binding, get_binding

logger = structlog.get_logger(__name__)


class TenantScopedBase(SQLModel):
    """
    Columns shared by every tenant-owned table.

    ``tenant_id`` must be assigned by the caller before the object is first
    flushed and is never reassigned afterwards. Models whose rows may belong
    to no tenant (system users, system roles) set ``__tenant_nullable__``;
    such rows can only be written by a session in bypass.
    """

    __tenant_nullable__ = False

    tenant_id: Optional[uuid.UUID] = Field(
        default=None,
        foreign_key="tenants.id",
        index=True,
        nullable=False,
        description="Tenant ID for multi-tenant isolation",
    )

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = Field(default=None, index=True)

    def validate_tenant_id(self) -> None:
        """Raise MissingTenantId if a required tenant id is absent"""
        if self.tenant_id is None and not self.__tenant_nullable__:
            raise MissingTenantId(
                f"{type(self).__name__} must have a tenant_id before it is persisted"
            )


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None or isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


def _violation(error_cls, message: str, obj, **fields):
    logger.error(
        "tenant_invariant_violation",
        error=error_cls.__name__,
        entity=type(obj).__name__,
        **fields,
    )
    return error_cls(message)


def _check_entity(obj: TenantScopedBase, binding: Binding, is_new: bool) -> None:
    entity = type(obj).__name__

    try:
        obj.validate_tenant_id()
    except MissingTenantId as exc:
        raise _violation(MissingTenantId, str(exc), obj) from None

    tenant_id = _as_uuid(obj.tenant_id)

    if not is_new:
        history = inspect(obj).attrs.tenant_id.history
        if history.deleted and history.added and _as_uuid(history.deleted[0]) != _as_uuid(history.added[0]):
            raise _violation(
                TenantReassignment,
                f"tenant_id of {entity} cannot be changed after it is persisted",
                obj,
                old_tenant_id=str(history.deleted[0]),
                new_tenant_id=str(history.added[0]),
            )

    if binding.bypass:
        return

    if tenant_id is None:
        raise _violation(
            TenantMismatch,
            f"{entity} rows without a tenant can only be written with isolation bypassed",
            obj,
        )

    if tenant_id != binding.tenant_id:
        raise _violation(
            TenantMismatch,
            f"{entity} belongs to another tenant than the session",
            obj,
            entity_tenant_id=str(tenant_id),
            bound_tenant_id=str(binding.tenant_id) if binding.tenant_id else None,
        )


@event.listens_for(Session, "before_flush")
def _guard_tenant_invariants(session, flush_context, instances):
    """Validate every new or modified tenant-scoped object before SQL is emitted"""
    if not (session.new or session.dirty or session.deleted):
        return

    binding = get_binding(session)
    if binding is None:
        logger.error("tenant_context_unbound", operation="flush")
        raise TenantContextUnbound("Session has no tenant binding; refusing to flush")

    for obj in session.new:
        if isinstance(obj, TenantScopedBase):
            _check_entity(obj, binding, is_new=True)

    for obj in session.dirty:
        if isinstance(obj, TenantScopedBase) and session.is_modified(obj):
            _check_entity(obj, binding, is_new=False)

    for obj in session.deleted:
        if isinstance(obj, TenantScopedBase):
            _check_entity(obj, binding, is_new=False)
