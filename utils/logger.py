"""Universal logfire setup for the application."""

import logfire
from logging import INFO, basicConfig, getLogger

from fastapi import FastAPI

from .config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure logfire once per process.

    Records are only shipped to Logfire when a write token is present, so local
    development and tests log to the console only. Standard library records
    (uvicorn, motor, redis) are bridged into logfire through the root logger.
    """
    logfire.configure(
        token=settings.logfire_token,
        service_name="campushub-auth",
        environment=settings.environment,
        send_to_logfire="if-token-present",
    )

    root = getLogger()
    if not any(isinstance(handler, logfire.LogfireLoggingHandler) for handler in root.handlers):
        if root.handlers:
            root.addHandler(logfire.LogfireLoggingHandler())
        else:
            basicConfig(level=INFO, handlers=[logfire.LogfireLoggingHandler()])


def instrument_libraries(app: FastAPI, with_redis: bool, with_mongo: bool) -> None:
    """Instrument common libraries for better observability."""
    logfire.instrument_fastapi(app)
    if with_redis:
        logfire.instrument_redis()
    if with_mongo:
        logfire.instrument_pymongo()
