"""
Tests for the request-scoped tenant context carrier
"""

import asyncio
import contextvars
import threading
import uuid

import pytest

from trainhub.core.errors import TenantContextAlreadyBound, TenantContextUnbound
from trainhub.core.principal import Principal
from trainhub.core.tenant_context import (
    add_tenant_context,
    bind_principal,
    current_principal,
    current_request_context,
    current_request_id,
    current_tenant_id,
    is_bypass_active,
    request_scope,
    tenant_scope,
)


def _tenant_principal(tenant_id=None):
    return Principal(user_id=uuid.uuid4(), tenant_id=tenant_id or uuid.uuid4())


def _super_admin():
    return Principal(user_id=uuid.uuid4(), tenant_id=None, permissions=frozenset({"*"}), bypass_isolation=True)


def test_no_context_outside_scope():
    assert current_request_context() is None
    assert current_principal() is None
    assert current_tenant_id() is None
    assert not is_bypass_active()


def test_bind_principal_requires_scope():
    with pytest.raises(TenantContextUnbound):
        bind_principal(_tenant_principal())


def test_scope_carries_tenant():
    principal = _tenant_principal()

    with request_scope() as ctx:
        assert current_tenant_id() is None
        bind_principal(principal)
        assert current_principal() is principal
        assert current_tenant_id() == principal.tenant_id
        assert ctx.tenant_id == principal.tenant_id

    assert current_principal() is None


def test_bind_is_idempotent_for_same_principal():
    principal = _tenant_principal()

    with request_scope():
        bind_principal(principal)
        bind_principal(principal)
        assert current_principal() is principal


def test_rebinding_to_other_principal_refused():
    with request_scope():
        bind_principal(_tenant_principal())

        with pytest.raises(TenantContextAlreadyBound):
            bind_principal(_tenant_principal())


def test_bypass_principal_has_no_tenant():
    with tenant_scope(_super_admin()):
        assert is_bypass_active()
        assert current_tenant_id() is None


def test_scope_released_when_handler_raises():
    with pytest.raises(RuntimeError):
        with tenant_scope(_tenant_principal()) as ctx:
            raise RuntimeError("handler failed")

    assert ctx.principal is None
    assert current_request_context() is None


def test_request_id_is_kept():
    with request_scope("req-123"):
        assert current_request_id() == "req-123"

    with request_scope():
        assert current_request_id()


def test_nested_scopes_restore_outer_context():
    outer = _tenant_principal()
    inner = _tenant_principal()

    with tenant_scope(outer):
        with tenant_scope(inner):
            assert current_principal() is inner
        assert current_principal() is outer


def test_threadpool_work_sees_request_context():
    principal = _tenant_principal()
    seen = []

    with request_scope():
        context = contextvars.copy_context()
        # Bound after the copy: the worker shares the same RequestContext object
        bind_principal(principal)
        worker = threading.Thread(target=context.run, args=(lambda: seen.append(current_tenant_id()),))
        worker.start()
        worker.join()

    assert seen == [principal.tenant_id]


def test_concurrent_threads_are_isolated():
    tenants = [uuid.uuid4() for _ in range(8)]
    barrier = threading.Barrier(len(tenants))
    results = {}

    def handle(tenant_id):
        with tenant_scope(_tenant_principal(tenant_id)):
            barrier.wait()
            results[tenant_id] = current_tenant_id()

    threads = [threading.Thread(target=handle, args=(t,)) for t in tenants]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results == {t: t for t in tenants}


@pytest.mark.asyncio
async def test_concurrent_tasks_are_isolated():
    tenants = [uuid.uuid4() for _ in range(20)]

    async def handle(tenant_id):
        with tenant_scope(_tenant_principal(tenant_id)):
            await asyncio.sleep(0)
            first = current_tenant_id()
            await asyncio.sleep(0.01)
            return first, current_tenant_id()

    results = await asyncio.gather(*(handle(t) for t in tenants))

    for tenant_id, (first, last) in zip(tenants, results):
        assert first == last == tenant_id


def test_log_processor_adds_context():
    principal = _tenant_principal()

    with tenant_scope(principal, request_id="req-log"):
        event = add_tenant_context(None, "info", {"event": "course_created"})

    assert event["request_id"] == "req-log"
    assert event["tenant_id"] == str(principal.tenant_id)
    assert event["user_id"] == str(principal.user_id)
    assert "bypass" not in event


def test_log_processor_marks_bypass():
    with tenant_scope(_super_admin()):
        event = add_tenant_context(None, "info", {"event": "tenant_deleted"})

    assert event["bypass"] is True
    assert event["tenant_id"] is None


def test_log_processor_outside_scope():
    assert add_tenant_context(None, "info", {"event": "startup"}) == {"event": "startup"}


def test_middleware_echoes_request_id(client):
    response = client.get("/health", headers={"X-Request-ID": "trace-42"})

    assert response.status_code == 200
    assert response.headers["x-request-id"] == "trace-42"


def test_middleware_generates_request_id(client):
    first = client.get("/health").headers["x-request-id"]
    second = client.get("/health").headers["x-request-id"]

    assert first and second and first != second
