"""
Database session binder

Binds the acting tenant and the bypass flag into a SQLAlchemy session. The
binding is kept in ``session.info`` (read by the ORM row policies) and pushed
into PostgreSQL as transaction-local settings at the start of every
transaction, so a pooled connection never carries a binding past the
transaction that set it.
"""

from dataclasses import dataclass
from typing import Optional, Union
import uuid

import structlog
from sqlalchemy import event, text
from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from trainhub.core.errors import Forbidden
from trainhub.core.tenant_context import current_principal

logger = structlog.get_logger(__name__)

BINDING_INFO_KEY = "trainhub.binding"
PRIVILEGED_INFO_KEY = "trainhub.privileged"


@dataclass(frozen=True)
class Binding:
    """Tenant binding of one session; tenant_id None means no tenant (fail closed)"""

    tenant_id: Optional[uuid.UUID] = None
    bypass: bool = False


def get_binding(session: Session) -> Optional[Binding]:
    """Current binding, or None if the session was never bound"""
    return session.info.get(BINDING_INFO_KEY)


def apply_binding(connection: Connection, binding: Binding) -> None:
    """Push a binding into the connection's transaction (PostgreSQL only)"""
    if connection.dialect.name != "postgresql":
        return

    if binding.tenant_id is not None:
        connection.execute(
            text("SELECT set_tenant_context(:tenant_id)"),
            {"tenant_id": str(binding.tenant_id)},
        )
    else:
        connection.execute(text("SELECT clear_tenant_context()"))

    if binding.bypass:
        connection.execute(text("SELECT enable_bypass_mode()"))
    else:
        connection.execute(text("SELECT disable_bypass_mode()"))


@event.listens_for(Session, "after_begin")
def _bind_on_begin(session, transaction, connection):
    """Re-apply the binding whenever the session starts a transaction on a connection"""
    binding = get_binding(session)
    if binding is not None:
        apply_binding(connection, binding)


class SessionBinder:
    """Set, clear and elevate the tenant binding of a session"""

    def __init__(self, session: Session, privileged: bool = False):
        self.session = session
        if privileged:
            session.info[PRIVILEGED_INFO_KEY] = True

    @property
    def binding(self) -> Optional[Binding]:
        return get_binding(self.session)

    @property
    def privileged(self) -> bool:
        return bool(self.session.info.get(PRIVILEGED_INFO_KEY))

    def set_tenant_context(self, tenant_id: Union[uuid.UUID, str]) -> None:
        if tenant_id is None:
            self.clear_tenant_context()
            return
        if not isinstance(tenant_id, uuid.UUID):
            tenant_id = uuid.UUID(str(tenant_id))
        current = self.binding or Binding()
        self._rebind(Binding(tenant_id=tenant_id, bypass=current.bypass))

    def clear_tenant_context(self) -> None:
        current = self.binding or Binding()
        self._rebind(Binding(tenant_id=None, bypass=current.bypass))

    def enable_bypass(self) -> None:
        if not self._bypass_permitted():
            principal = current_principal()
            logger.warning(
                "bypass_refused",
                user_id=str(principal.user_id) if principal else None,
            )
            raise Forbidden("Bypass of tenant isolation is not permitted")
        current = self.binding or Binding()
        self._rebind(Binding(tenant_id=current.tenant_id, bypass=True))

    def disable_bypass(self) -> None:
        current = self.binding or Binding()
        self._rebind(Binding(tenant_id=current.tenant_id, bypass=False))

    def _bypass_permitted(self) -> bool:
        if self.privileged:
            return True
        principal = current_principal()
        return principal is not None and principal.bypass_isolation

    def _rebind(self, binding: Binding) -> None:
        previous = self.binding
        if previous == binding:
            return

        if previous is not None:
            # Objects loaded under the old binding must not leak into the new one
            if self.session.new or self.session.dirty or self.session.deleted:
                self.session.flush()
            self.session.expunge_all()

        self.session.info[BINDING_INFO_KEY] = binding
        if self.session.in_transaction():
            apply_binding(self.session.connection(), binding)

        logger.debug(
            "session_bound",
            tenant_id=str(binding.tenant_id) if binding.tenant_id else None,
            bypass=binding.bypass,
        )

    def bind_from_context(self) -> None:
        """Bind from the request's tenant context carrier"""
        principal = current_principal()
        if principal is not None and principal.bypass_isolation:
            self.clear_tenant_context()
            self.enable_bypass()
            return
        tenant_id = principal.tenant_id if principal is not None else None
        self._rebind(Binding(tenant_id=tenant_id, bypass=False))
