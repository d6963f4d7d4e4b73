from __future__ import annotations

import time
from collections import defaultdict, deque

from fastapi import Request
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Sliding-window limit per client IP, applied only to paths containing ``path_marker``.

    Every tutor request costs an upstream Gemini call, so the rest of the API is left alone.
    """

    def __init__(self, app, limit: int = 30, window_seconds: int = 60, path_marker: str = "/tutor"):
        super().__init__(app)
        self.limit = limit
        self.window_seconds = window_seconds
        self.path_marker = path_marker
        self.requests: dict[str, deque[float]] = defaultdict(deque)

    async def dispatch(self, request: Request, call_next):
        if self.path_marker not in request.url.path:
            return await call_next(request)

        ip = request.client.host if request.client else "unknown"
        now = time.monotonic()
        bucket = self.requests[ip]

        while bucket and now - bucket[0] > self.window_seconds:
            bucket.popleft()

        if len(bucket) >= self.limit:
            logger.warning("Rate limit hit for {} on {}", ip, request.url.path)
            return JSONResponse(
                status_code=429,
                content={"detail": "Too many requests. Please retry shortly."},
            )

        bucket.append(now)
        return await call_next(request)
