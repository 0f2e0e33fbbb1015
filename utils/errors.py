"""Error taxonomy for the auth service and the handlers that render it."""

import logfire

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected while starting the application."""


class AuthServiceError(Exception):
    """Base class for errors that map to an HTTP response."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    default_message: str = "Request could not be processed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def headers(self) -> dict[str, str] | None:
        return None

    def to_content(self) -> dict:
        return {"detail": self.message}


class InvalidCredentialsError(AuthServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid credentials"


class UnauthorizedError(AuthServiceError):
    """Bad, expired or revoked token."""

    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Could not validate credentials"

    @property
    def headers(self) -> dict[str, str] | None:
        return {"WWW-Authenticate": "Bearer"}


class ForbiddenError(AuthServiceError):
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Your account has been deactivated. Please contact support."


class NotFoundError(AuthServiceError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Record not found"


class ConflictError(AuthServiceError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "A record with this value already exists"


class RateLimitedError(AuthServiceError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = max(1, int(retry_after))
        super().__init__(message)

    @property
    def headers(self) -> dict[str, str] | None:
        return {"Retry-After": str(self.retry_after)}

    def to_content(self) -> dict:
        return {"detail": self.message, "retry_after": self.retry_after}


def register_exception_handlers(app: FastAPI, expose_errors: bool = False) -> None:
    """Attach the top-level handlers that turn errors into the JSON error envelope.

    Args:
        app (FastAPI): Application to attach the handlers to.
        expose_errors (bool): Include the text of unexpected exceptions in the
            response body. Only meant for non-production environments.
    """

    @app.exception_handler(AuthServiceError)
    async def handle_auth_service_error(request: Request, exc: AuthServiceError):
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_content(),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logfire.exception(
            f"Unhandled error on {request.method} {request.url.path}: {exc!r}"
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": str(exc) if expose_errors else "An unexpected error occurred"
            },
        )
