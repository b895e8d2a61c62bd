"""Body-logging ASGI middleware.

Logs the raw body of every POST request and the raw body of every status-200
response at debug level, leaving what the downstream app and the client see
unchanged.

Usage:
    app = FastAPI()
    app.add_middleware(BodyLogMiddleware, logger=get_logger("api"))
"""

from __future__ import annotations

from typing import Any

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from uhttp.log import RawJSON, get_logger

REQUEST_BODY_EVENT = "gin_request_body"
RESPONSE_BODY_EVENT = "gin_response_body"


def _replay_receive(body: bytes, receive: Receive) -> Receive:
    """Return a receive callable that yields ``body`` once, then defers to ``receive``."""
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay


class _ResponseCapture:
    """Forwards send() messages while recording the status and body bytes."""

    def __init__(self, send: Send) -> None:
        self._send = send
        self.status: int | None = None
        self.body = bytearray()

    async def send(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.status = message["status"]
        elif message["type"] == "http.response.body":
            self.body.extend(message.get("body", b""))
        await self._send(message)


class BodyLogMiddleware:
    """Log POST request bodies and 200 response bodies as raw JSON."""

    def __init__(self, app: ASGIApp, logger: Any = None) -> None:
        self.app = app
        self._logger = logger or get_logger("uhttp.middleware")

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        action = scope.get("path", "")

        if scope["method"] == "POST":
            body = await self._read_body(receive, action)
            self._logger.debug(REQUEST_BODY_EVENT, action=action, body=RawJSON(body))
            receive = _replay_receive(body, receive)

        capture = _ResponseCapture(send)
        await self.app(scope, receive, capture.send)

        if capture.status == 200:
            self._logger.debug(
                RESPONSE_BODY_EVENT, action=action, body=RawJSON(bytes(capture.body))
            )

    async def _read_body(self, receive: Receive, action: str) -> bytes:
        """Drain the request body. Failures are logged and the bytes read so far returned."""
        chunks = bytearray()
        try:
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    self._logger.error(
                        "request_body_err",
                        action=action,
                        error="client disconnected before the body was complete",
                    )
                    break
                chunks.extend(message.get("body", b""))
                if not message.get("more_body", False):
                    break
        except Exception as e:
            self._logger.error("request_body_err", action=action, error=str(e))
        return bytes(chunks)
