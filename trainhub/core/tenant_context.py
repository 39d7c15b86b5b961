"""
Request-scoped tenant context

Each request gets its own ``RequestContext`` object stored in a ContextVar.
Work handed to a threadpool runs in a copy of the context and therefore sees
the same object, while concurrent requests always see different objects.
"""

from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Iterator, Optional
import uuid

import structlog

from trainhub.core.errors import TenantContextAlreadyBound, TenantContextUnbound
from trainhub.core.principal import Principal

logger = structlog.get_logger(__name__)


@dataclass
class RequestContext:
    """Mutable per-request holder for the resolved principal"""

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    principal: Optional[Principal] = None

    @property
    def tenant_id(self) -> Optional[uuid.UUID]:
        if self.principal is None or self.principal.bypass_isolation:
            return None
        return self.principal.tenant_id

    @property
    def bypass(self) -> bool:
        return self.principal is not None and self.principal.bypass_isolation

    def clear(self) -> None:
        self.principal = None


_request_context: ContextVar[Optional[RequestContext]] = ContextVar(
    "trainhub_request_context", default=None
)


@contextmanager
def request_scope(request_id: Optional[str] = None) -> Iterator[RequestContext]:
    """Open a fresh request scope; released on every exit path"""
    ctx = RequestContext(request_id=request_id) if request_id else RequestContext()
    token = _request_context.set(ctx)
    try:
        yield ctx
    finally:
        ctx.clear()
        _request_context.reset(token)


@contextmanager
def tenant_scope(principal: Principal, request_id: Optional[str] = None) -> Iterator[RequestContext]:
    """Open a request scope already bound to a principal (jobs, scripts, tests)"""
    with request_scope(request_id) as ctx:
        bind_principal(principal)
        yield ctx


def current_request_context() -> Optional[RequestContext]:
    return _request_context.get()


def bind_principal(principal: Principal) -> None:
    """Bind the resolved principal to the current scope, exactly once"""
    ctx = _request_context.get()
    if ctx is None:
        raise TenantContextUnbound("No request scope is open; cannot bind principal")

    if ctx.principal is not None:
        if ctx.principal == principal:
            return
        logger.error(
            "tenant_context_rebind_refused",
            bound_user_id=str(ctx.principal.user_id),
            new_user_id=str(principal.user_id),
        )
        raise TenantContextAlreadyBound("Request scope is already bound to another principal")

    ctx.principal = principal


def current_principal() -> Optional[Principal]:
    ctx = _request_context.get()
    return ctx.principal if ctx else None


def current_tenant_id() -> Optional[uuid.UUID]:
    """Tenant of the acting principal; None for bypass principals and outside a scope"""
    ctx = _request_context.get()
    return ctx.tenant_id if ctx else None


def is_bypass_active() -> bool:
    ctx = _request_context.get()
    return ctx.bypass if ctx else False


def current_request_id() -> Optional[str]:
    ctx = _request_context.get()
    return ctx.request_id if ctx else None


def add_tenant_context(_logger, _method_name, event_dict):
    """structlog processor stamping events with the request's tenant context"""
    ctx = _request_context.get()
    if ctx is None:
        return event_dict
    event_dict.setdefault("request_id", ctx.request_id)
    if ctx.principal is not None:
        event_dict.setdefault("user_id", str(ctx.principal.user_id))
        event_dict.setdefault("tenant_id", str(ctx.tenant_id) if ctx.tenant_id else None)
        if ctx.bypass:
            event_dict.setdefault("bypass", True)
    return event_dict
