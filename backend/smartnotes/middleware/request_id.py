"""
SmartNotes Backend — Request ID Middleware
============================================

What:  Assigns every request a short correlation ID and returns it in X-Request-ID.
Why:   Every log line and every error body for one request carries the same ID,
       so a user-reported error can be matched to server logs.
How:   Client-supplied IDs are accepted when they look sane; otherwise a new
       8-character ID is generated. The ID lives in a ContextVar for the request.
"""

import re
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own ID
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Client IDs end up in logs; keep them short and printable
_VALID_CLIENT_ID = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_request_id() -> str:
    return str(uuid.uuid4())[:8]


class RequestIDMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        client_id = request.headers.get("X-Request-ID", "")
        rid = client_id if _VALID_CLIENT_ID.match(client_id) else new_request_id()

        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers["X-Request-ID"] = rid
        return response
