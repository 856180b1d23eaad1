"""
SmartNotes Backend — Rate Limiting Middleware
===============================================

What:  Sliding-window request limit per client.
Why:   Keeps a single device or script from exhausting the AI quota or the database.
How:   Clients are keyed by IP. A bearer token gets a budget of its own once it
       has authenticated a request, so several users behind one NAT do not
       share a budget while made-up tokens still count against the IP.
       Auth routes (sign-in, sign-up) are always keyed by IP.

Algorithm: Sliding Window Log
    1. Each client key keeps the timestamps of its recent requests
    2. Timestamps older than the window are dropped on every request
    3. At `rate_limit_requests` remaining timestamps the request is rejected (429)

In-memory and per-process; multi-worker deployments need a shared store.
"""

import hashlib
import logging
import time
from collections import OrderedDict, defaultdict
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from smartnotes.config import settings
from smartnotes.exceptions import RateLimitExceededError
from smartnotes.middleware.request_id import request_id_var

logger = logging.getLogger(__name__)


AUTH_PATH_PREFIX = "/api/auth/"

# Oldest entries are evicted past this many remembered tokens
MAX_VERIFIED_TOKENS = 10_000

_verified_tokens: "OrderedDict[str, None]" = OrderedDict()


def token_key(token: str) -> str:
    return "token:" + hashlib.sha256(token.strip().encode("utf-8")).hexdigest()[:16]


def mark_token_verified(token: str) -> None:
    """Called once a token has resolved to an identity."""
    key = token_key(token)
    _verified_tokens[key] = None
    _verified_tokens.move_to_end(key)
    while len(_verified_tokens) > MAX_VERIFIED_TOKENS:
        _verified_tokens.popitem(last=False)


def forget_token(token: str) -> None:
    _verified_tokens.pop(token_key(token), None)


def client_key(request: Request) -> str:
    ip_key = "ip:" + (request.client.host if request.client else "unknown")
    if request.url.path.startswith(AUTH_PATH_PREFIX):
        return ip_key
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        key = token_key(token)
        if key in _verified_tokens:
            return key
    return ip_key


class RateLimitMiddleware(BaseHTTPMiddleware):

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    # Sweep idle clients every this many requests
    CLEANUP_EVERY = 1000

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._requests: Dict[str, List[float]] = defaultdict(list)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        key = client_key(request)
        now = time.time()
        window_start = now - settings.rate_limit_window

        recent = [ts for ts in self._requests[key] if ts > window_start]
        self._requests[key] = recent

        if len(recent) >= settings.rate_limit_requests:
            retry_after = int(recent[0] + settings.rate_limit_window - now) + 1
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds window",
                key.split(":")[0],
                len(recent),
                settings.rate_limit_window,
            )
            # Raised exceptions would bypass the app's handlers from here
            exc = RateLimitExceededError(retry_after=retry_after)
            return JSONResponse(
                status_code=exc.status_code,
                content={
                    "error": exc.error_code,
                    "message": exc.message,
                    "details": exc.context,
                    "request_id": request_id_var.get(""),
                },
                headers={"Retry-After": str(retry_after)},
            )

        recent.append(now)
        self._seen += 1
        if self._seen % self.CLEANUP_EVERY == 0:
            self._cleanup_inactive(window_start)

        return await call_next(request)

    def _cleanup_inactive(self, window_start: float) -> None:
        inactive = [
            key for key, timestamps in self._requests.items()
            if not timestamps or timestamps[-1] < window_start
        ]
        for key in inactive:
            del self._requests[key]
        if inactive:
            logger.debug("Cleaned up %d inactive rate-limit entries", len(inactive))
