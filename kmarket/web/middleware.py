"""FastAPI middleware: request ID injection and rate limiting."""

from __future__ import annotations

import time
import uuid
from collections import defaultdict
from typing import TYPE_CHECKING

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import JSONResponse

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

logger = structlog.get_logger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tags every request with an id, in the log context and the response."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers["x-request-id"] = request_id
        return response


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window limiter per client IP.

    Paths under ``prefix`` share one budget of ``max_requests`` per window.
    Paths under ``credential_prefix`` (sign-in, signup, password reset) are
    counted in their own, smaller bucket so guessing passwords or spraying
    reset emails runs out long before ordinary API traffic would.
    """

    def __init__(
        self,
        app: object,
        max_requests: int = 60,
        window_seconds: int = 60,
        prefix: str = "/api/",
        credential_prefix: str = "/api/auth/",
        credential_max_requests: int = 10,
    ) -> None:
        super().__init__(app)  # type: ignore[arg-type]
        self._window = window_seconds
        self._prefix = prefix
        self._credential_prefix = credential_prefix
        self._limits = {"api": max_requests, "credentials": credential_max_requests}
        self._hits: dict[tuple[str, str], list[float]] = defaultdict(list)

    def _bucket(self, path: str) -> str | None:
        if path.startswith(self._credential_prefix):
            return "credentials"
        if path.startswith(self._prefix):
            return "api"
        return None

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        bucket = self._bucket(request.url.path)
        if bucket is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        key = (client_ip, bucket)
        now = time.monotonic()
        hits = [t for t in self._hits[key] if now - t < self._window]
        self._hits[key] = hits

        if len(hits) >= self._limits[bucket]:
            logger.warning(
                "rate_limit_exceeded", ip=client_ip, bucket=bucket, path=request.url.path
            )
            oldest = hits[0] if hits else now
            retry_after = max(1, int(self._window - (now - oldest)) + 1)
            return JSONResponse(
                {"detail": "Rate limit exceeded. Try again later."},
                status_code=429,
                headers={"Retry-After": str(min(retry_after, self._window))},
            )

        hits.append(now)
        return await call_next(request)
