"""Límite de tamaño de cuerpo para clientes HTTP mínimos.

El firmware no siempre manda Content-Length y puede no soportar chunked;
por eso el middleware lee el cuerpo él mismo, corta apenas supera el
límite y le pasa a la app el cuerpo completo en un solo mensaje.
"""

from __future__ import annotations

import logging

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .error_handlers import error_response
from .errors import PayloadTooLarge, ValidationError

logger = logging.getLogger(__name__)


class BodySizeLimitMiddleware:
    def __init__(self, app: ASGIApp, max_body_bytes: int) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        declared = dict(scope.get("headers") or []).get(b"content-length")
        if declared is not None:
            try:
                declared_len = int(declared)
            except ValueError:
                await error_response(ValidationError("Invalid Content-Length"))(scope, receive, send)
                return
            if declared_len > self.max_body_bytes:
                await self._reject(scope, receive, send, declared_len)
                return

        body = bytearray()
        more_body = True
        while more_body:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            body.extend(message.get("body", b""))
            if len(body) > self.max_body_bytes:
                await self._reject(scope, receive, send, len(body))
                return
            more_body = message.get("more_body", False)

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": bytes(body), "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    async def _reject(self, scope: Scope, receive: Receive, send: Send, size: int) -> None:
        logger.warning(
            "BODY_TOO_LARGE path=%s size>=%d limit=%d",
            scope.get("path"), size, self.max_body_bytes,
        )
        await error_response(PayloadTooLarge())(scope, receive, send)
