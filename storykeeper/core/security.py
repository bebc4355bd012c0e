"""
Security Middleware for FastAPI

Provides:
- Sliding-window rate limiting per IP on /api/ paths
- Scanner path blocking
- A stricter limiter used as a route dependency by the speech endpoints
"""

import time
from collections import defaultdict
from typing import Callable, Dict, List, Tuple
from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from storykeeper.core.config import settings
from storykeeper.core.logger import Logger

logger = Logger("Security")


class RateLimiter:
    """In-memory sliding-window limiter keyed by client IP."""

    def __init__(self, max_requests: int, window_seconds: float, clock: Callable[[], float] = time.time):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[str, List[float]] = defaultdict(list)

    def check(self, ip: str) -> Tuple[bool, int]:
        """
        Check if request is allowed.
        Returns (allowed: bool, remaining: int)
        """
        now = self._clock()
        window_start = now - self.window_seconds

        # Clean old requests
        self._requests[ip] = [t for t in self._requests[ip] if t > window_start]

        if len(self._requests[ip]) >= self.max_requests:
            return False, 0

        self._requests[ip].append(now)
        return True, self.max_requests - len(self._requests[ip])

    def reset(self):
        self._requests.clear()


def get_client_ip(request: Request) -> str:
    """Get real client IP (considering proxies)."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return request.client.host if request.client else "unknown"


# Paths that only vulnerability scanners ask for
SUSPICIOUS_PATTERNS = [
    '.php', '.asp', '.aspx', '.cgi',
    'phpmyadmin', 'wp-admin', 'wp-login',
    '.env', '.git', '.htaccess', 'web.config',
]


class SecurityMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, rate_limiter: RateLimiter = None, prefix: str = "/api/"):
        super().__init__(app)
        self.rate_limiter = rate_limiter or api_rate_limiter
        self.prefix = prefix

    def _is_suspicious_path(self, path: str) -> bool:
        path_lower = path.lower()
        return any(pattern in path_lower for pattern in SUSPICIOUS_PATTERNS)

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if self._is_suspicious_path(path):
            logger.warn(f"🔍 Scanner request from {get_client_ip(request)}: {path}")
            return JSONResponse(status_code=404, content={"error": "Not found."})

        if not path.startswith(self.prefix):
            return await call_next(request)

        client_ip = get_client_ip(request)
        allowed, remaining = self.rate_limiter.check(client_ip)
        if not allowed:
            logger.warn(f"🚫 Rate limit exceeded for {client_ip}: {path}")
            return JSONResponse(
                status_code=429,
                content={"error": "Too many requests from this IP, please try again later."}
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        return response


api_rate_limiter = RateLimiter(
    max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)

speech_rate_limiter = RateLimiter(
    max_requests=settings.SPEECH_RATE_MAX_PER_MINUTE,
    window_seconds=60,
)


async def limit_speech_requests(request: Request):
    """Route dependency for the speech endpoints."""
    allowed, _ = speech_rate_limiter.check(get_client_ip(request))
    if not allowed:
        raise HTTPException(status_code=429, detail="Too many speech requests, please slow down.")
