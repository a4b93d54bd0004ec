"""Middleware for request correlation ID tracking."""

import uuid

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from core.error_handler import set_correlation_id


CORRELATION_ID_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware:
    """Attach a correlation ID to every request and response.

    Written as plain ASGI middleware so long-lived SSE responses pass
    through without being wrapped. The ID is taken from the incoming
    ``X-Correlation-ID`` header when present, stored in the logging context
    and on ``request.state``, and echoed on the response.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = Headers(scope=scope).get(CORRELATION_ID_HEADER) or str(
            uuid.uuid4()
        )
        set_correlation_id(correlation_id)
        scope.setdefault("state", {})["correlation_id"] = correlation_id

        async def send_with_correlation_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message)[CORRELATION_ID_HEADER] = correlation_id
            await send(message)

        await self.app(scope, receive, send_with_correlation_id)
