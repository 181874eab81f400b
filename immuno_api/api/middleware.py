"""HTTP Middleware - CORS, request logging and per-client rate limiting.

Invariants:
    - Rate limit: at most max_requests per client IP per fixed window; excess -> 429 + Retry-After
    - /api/health is never rate limited (orchestrators poll it)
    - Every HTTP request logs method, path, status code and duration once it completes
    - CORS origins come from settings ("*" when CORS_ALLOWED_ORIGINS is unset)

Design Decisions:
    - Pure ASGI middleware over BaseHTTPMiddleware: no response buffering
    - In-memory fixed window: single-process uvicorn, counters reset on restart
      (ADR: no shared cache dependency for a limit this coarse)
"""

import logging
import time
from dataclasses import dataclass

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from immuno_api.config import Settings

logger = logging.getLogger(__name__)

RATE_LIMIT_EXEMPT_PATHS = ("/api/health",)


@dataclass
class _Window:
    started_at: float
    count: int = 0


class FixedWindowLimiter:
    """Counts hits per key inside fixed windows of window_seconds."""

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    def hit(self, key: str) -> tuple[bool, int]:
        """Record one hit. Returns (allowed, seconds until the window resets)."""
        now = self._clock()
        window = self._windows.get(key)
        if window is None or now - window.started_at >= self.window_seconds:
            window = self._windows[key] = _Window(started_at=now)
            self._evict_expired(now)
        window.count += 1
        retry_after = max(1, int(window.started_at + self.window_seconds - now))
        return window.count <= self.max_requests, retry_after

    def _evict_expired(self, now: float) -> None:
        expired = [
            key for key, w in self._windows.items()
            if now - w.started_at >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]


def _client_key(scope: Scope) -> str:
    for name, value in scope.get("headers", []):
        if name == b"x-forwarded-for":
            return value.decode("latin-1").split(",")[0].strip()
    client = scope.get("client")
    return client[0] if client else "unknown"


class RateLimitMiddleware:
    def __init__(self, app: ASGIApp, limiter: FixedWindowLimiter):
        self.app = app
        self.limiter = limiter

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        path = scope.get("path", "")
        if scope["type"] != "http" or path.startswith(RATE_LIMIT_EXEMPT_PATHS):
            await self.app(scope, receive, send)
            return
        key = _client_key(scope)
        allowed, retry_after = self.limiter.hit(key)
        if allowed:
            await self.app(scope, receive, send)
            return
        logger.warning(
            "Rate limit exceeded",
            extra={"path": path, "client": key, "method": scope.get("method")},
        )
        response = JSONResponse(
            status_code=429,
            content={
                "error": {
                    "code": "RATE_LIMIT_EXCEEDED",
                    "message": "Too many requests, please try again later.",
                    "category": "validation",
                    "severity": "warning",
                },
            },
            headers={"Retry-After": str(retry_after)},
        )
        await response(scope, receive, send)


class RequestLoggingMiddleware:
    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        started = time.perf_counter()
        status_code = 500

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            logger.info(
                f"{scope.get('method')} {scope.get('path')} {status_code}",
                extra={
                    "method": scope.get("method"),
                    "path": scope.get("path"),
                    "status_code": status_code,
                    "duration_ms": duration_ms,
                    "client": _client_key(scope),
                },
            )


def register_middleware(app: FastAPI, settings: Settings) -> None:
    """Add middleware; the last added runs first (CORS outermost)."""
    app.add_middleware(
        RateLimitMiddleware,
        limiter=FixedWindowLimiter(
            max_requests=settings.rate_limit_max,
            window_seconds=settings.rate_limit_window_ms / 1000,
        ),
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
