import logfire

from datetime import datetime, timezone

from dotenv import load_dotenv

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from contextlib import asynccontextmanager

import redis.asyncio

from middleware.rate_limiting import RateLimitMiddleware

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from models.users import User
from models.security import RefreshToken

from repositories.base import UserRepository
from repositories.memory import MemoryUserRepository
from repositories.mongo import MongoUserRepository

from security.helpers import get_password_context
from security.tokens import TokenCodec

from services.rate_limiter import RateLimiter, build_rate_limiters

from utils.config import Settings
from utils.errors import ConfigurationError, register_exception_handlers
from utils.logger import configure_logging, instrument_libraries

from routers import admin, auth, users

from typing import Optional


# Load environment variables first
load_dotenv()


def _select_repository(settings: Settings) -> UserRepository:
    if settings.database_connection_string:
        return MongoUserRepository()

    if settings.is_production:
        raise ConfigurationError("DATABASE_CONNECTION_STRING is required in production")

    logfire.warning("DATABASE_CONNECTION_STRING not set, using the in-memory repository")
    return MemoryUserRepository()


def create_app(
    settings: Optional[Settings] = None,
    repository: Optional[UserRepository] = None,
    login_limiter: Optional[RateLimiter] = None,
    global_limiter: Optional[RateLimiter] = None,
) -> FastAPI:
    """Build the application and pick its backends.

    Raises:
        ConfigurationError: Raised when a signing secret is missing, so that a
            misconfigured process never starts serving.
    """
    settings = settings or Settings.from_env()

    # Configure logfire BEFORE creating FastAPI app
    configure_logging(settings)

    token_codec = TokenCodec.from_settings(settings)
    repository = repository or _select_repository(settings)

    redis_client = None
    if login_limiter is None or global_limiter is None:
        if settings.redis_url:
            redis_client = redis.asyncio.from_url(
                settings.redis_url,
                socket_timeout=1.0,
                socket_connect_timeout=1.0,
            )
        default_login, default_global = build_rate_limiters(settings, redis_client)
        login_limiter = login_limiter or default_login
        global_limiter = global_limiter or default_global

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logfire.info("Starting CampusHub auth service...")

        mongo_client = None
        if isinstance(repository, MongoUserRepository):
            mongo_client = AsyncIOMotorClient(
                settings.database_connection_string, tz_aware=True
            )  # * Connect to MongoDB

            await init_beanie(
                database=mongo_client[settings.database_name],
                document_models=[User, RefreshToken],
            )
            logfire.info("Database initialized successfully")

        yield

        logfire.info("Shutting down CampusHub auth service...")
        if mongo_client is not None:
            mongo_client.close()
        if redis_client is not None:
            await redis_client.aclose()
        logfire.info("Application shutdown complete")

    app = FastAPI(
        title="CampusHub Auth API",
        description="Session issuance, rotation and revocation with brute-force protection for the CampusHub student services platform.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.token_codec = token_codec
    app.state.repository = repository
    app.state.pwd_context = get_password_context(settings.bcrypt_rounds)
    app.state.login_limiter = login_limiter
    app.state.global_limiter = global_limiter

    if settings.logfire_token:
        instrument_libraries(
            app,
            with_redis=redis_client is not None,
            with_mongo=isinstance(repository, MongoUserRepository),
        )

    register_exception_handlers(app, expose_errors=not settings.is_production)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["127.0.0.1"])
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RateLimitMiddleware, path_prefix="/api/")

    @app.get("/health", tags=["Health"])
    async def health():
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    app.include_router(auth.router)
    app.include_router(users.router)
    app.include_router(admin.router)

    return app


app = create_app()
