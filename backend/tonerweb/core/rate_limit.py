"""
Per-client rate limiting for the AI endpoints.

Fixed-window counters keyed by client IP, held in process memory:
each client gets ``max_requests`` calls per ``window_seconds``, counted from
its first request in the window. Rejected requests get a 429 error envelope
with ``Retry-After``; every response under the limited prefix carries
X-RateLimit-Limit / -Remaining / -Reset headers.
"""
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from tonerweb.core.errors import RateLimitError, classify_error
from tonerweb.core.logging import get_logger
from tonerweb.core.metrics import record_rate_limit_rejection

logger = get_logger(__name__)


def get_client_ip(request: Request) -> str:
    """Client IP, honouring proxy headers."""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    if request.client:
        return request.client.host

    return "unknown"


@dataclass
class _Window:
    count: int
    reset_at: float


class RateLimiter:
    """
    Fixed-window request counter.

    Args:
        window_seconds: Window length
        max_requests: Requests allowed per client per window
        clock: Wall-clock time source (reset times are reported as epoch
            seconds), injectable for tests
    """

    def __init__(
        self,
        window_seconds: int,
        max_requests: int,
        clock: Callable[[], float] = time.time,
    ):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._windows: Dict[str, _Window] = {}
        self._lock = Lock()

    def check(self, identifier: str) -> Tuple[bool, int, float]:
        """
        Count one request for ``identifier``.

        Returns:
            (allowed, remaining, reset_at)
        """
        with self._lock:
            now = self._clock()
            self._drop_expired(now)

            window = self._windows.get(identifier)
            if window is None:
                window = _Window(count=0, reset_at=now + self.window_seconds)
                self._windows[identifier] = window

            if window.count >= self.max_requests:
                return False, 0, window.reset_at

            window.count += 1
            return True, self.max_requests - window.count, window.reset_at

    def retry_after(self, reset_at: float) -> int:
        return max(1, math.ceil(reset_at - self._clock()))

    def _drop_expired(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if window.reset_at <= now]
        for key in expired:
            del self._windows[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._windows)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply a RateLimiter to every request under ``path_prefix``."""

    def __init__(self, app, limiter: RateLimiter, path_prefix: str = "/api/ai"):
        super().__init__(app)
        self.limiter = limiter
        self.path_prefix = path_prefix

    def _headers(self, remaining: int, reset_at: float) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limiter.max_requests),
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(int(reset_at)),
        }

    async def dispatch(self, request: Request, call_next):
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        client_ip = get_client_ip(request)
        allowed, remaining, reset_at = self.limiter.check(client_ip)

        if not allowed:
            retry_after = self.limiter.retry_after(reset_at)
            record_rate_limit_rejection()
            logger.warning(
                "rate_limit_exceeded",
                client_ip=client_ip,
                path=request.url.path,
                retry_after=retry_after,
            )
            classified = classify_error(RateLimitError(retry_after=retry_after))
            headers = self._headers(0, reset_at)
            headers["Retry-After"] = str(retry_after)
            return JSONResponse(
                status_code=classified.http_status,
                content=classified.to_response(),
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(self._headers(remaining, reset_at))
        return response
