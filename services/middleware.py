"""FastAPI middleware: Request ID tracking (pure ASGI, streaming- and socket-safe)."""

from __future__ import annotations

import uuid

from starlette.types import ASGIApp, Message, Receive, Scope, Send

_HEADER = b"x-request-id"


class RequestIdMiddleware:
    """Inject a unique request ID into every HTTP request and WebSocket connection.

    Uses a pure ASGI implementation (no BaseHTTPMiddleware), which would
    otherwise buffer responses and does not apply to WebSocket scopes.

    If the client sends ``X-Request-ID``, it is reused; otherwise a short
    UUID is generated. The ID is echoed on the HTTP response start and on
    the WebSocket accept message.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] not in ("http", "websocket"):
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(_HEADER, b"").decode() or str(uuid.uuid4())[:8]

        # Store in scope state for downstream access
        scope.setdefault("state", {})
        scope["state"]["request_id"] = request_id

        async def send_with_request_id(message: Message) -> None:
            if message["type"] in ("http.response.start", "websocket.accept"):
                out = list(message.get("headers", []))
                out.append((_HEADER, request_id.encode()))
                message["headers"] = out
            await send(message)

        await self.app(scope, receive, send_with_request_id)
