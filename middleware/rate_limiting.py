"""
FastAPI middleware enforcing the global API rate limit.

The limiter backend is chosen at startup and read from `app.state`, so the
middleware itself holds no counters.
"""

from typing import Callable, Iterable, Optional

import logfire

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from security.helpers import get_client_ip


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Applies the global limiter to every request under `path_prefix`.

    Args:
        app: FastAPI application instance
        path_prefix: Only paths starting with this prefix are limited
        exclude_paths: Paths exempt from rate limiting (default: None)
    """

    def __init__(
        self,
        app: FastAPI,
        path_prefix: str = "/api/",
        exclude_paths: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.path_prefix = path_prefix
        self.exclude_paths = set(exclude_paths) if exclude_paths else set()

    def _should_limit_path(self, path: str) -> bool:
        return path.startswith(self.path_prefix) and path not in self.exclude_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process incoming requests and enforce rate limiting.

        Args:
            request: FastAPI Request object
            call_next: Next middleware or route handler

        Returns:
            Response object
        """
        limiter = getattr(request.app.state, "global_limiter", None)
        if limiter is None or not self._should_limit_path(request.url.path):
            return await call_next(request)

        client_id = get_client_ip(request)
        result = await limiter.consume(client_id)

        if not result.allowed:
            logfire.warning(f"Rate limit exceeded for {client_id} on {request.url.path}")

            return JSONResponse(
                status_code=429,
                content={
                    "detail": "Too many requests. Please try again later.",
                    "retry_after": result.retry_after_seconds,
                },
                headers={
                    "X-RateLimit-Limit": str(limiter.points),
                    "X-RateLimit-Remaining": "0",
                    "Retry-After": str(result.retry_after_seconds),
                },
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limiter.points)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining)

        return response
