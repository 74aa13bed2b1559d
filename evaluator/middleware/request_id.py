"""Request and browser-session correlation ids.

The request id comes from the incoming X-Request-ID header or is a fresh
UUID4, and is echoed back on the response. The session id is bound by the
orchestrator once a browser session opens. Both live in context variables,
so every log line of one evaluation carries them, including lines logged
from the pipeline task and the deadline watchdog.
"""

import contextvars
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)
session_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "session_id", default=""
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        rid = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = rid
            return response
        finally:
            request_id_var.reset(token)


def get_request_id() -> str:
    """Current request id, empty outside a request (CLI runs)."""
    return request_id_var.get()


def bind_session_id(session_id: str) -> contextvars.Token:
    """Tag log lines with a browser session id until the token is reset."""
    return session_id_var.set(session_id)


def get_session_id() -> str:
    return session_id_var.get()


def unbind_session_id(token: contextvars.Token) -> None:
    session_id_var.reset(token)
