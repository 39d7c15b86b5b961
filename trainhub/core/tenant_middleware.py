"""
Tenant context middleware for multi-tenant isolation
"""

import structlog

from trainhub.core.tenant_context import request_scope

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = b"x-request-id"


class TenantContextMiddleware:
    """
    Open a request scope around every HTTP and websocket request.

    The principal is bound later by the authentication dependency; this
    middleware only guarantees that the scope exists for the whole request and
    is released afterwards, whether the request succeeds, fails or is
    cancelled.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        request_id = None
        for name, value in scope.get("headers", []):
            if name == REQUEST_ID_HEADER:
                request_id = value.decode("latin-1")
                break

        with request_scope(request_id) as ctx:

            async def send_with_request_id(message):
                if message["type"] == "http.response.start":
                    headers = list(message.get("headers", []))
                    headers.append((REQUEST_ID_HEADER, ctx.request_id.encode("latin-1")))
                    message = {**message, "headers": headers}
                await send(message)

            await self.app(scope, receive, send_with_request_id)
