"""Application settings loaded from the environment."""

import os

from pydantic import BaseModel, Field
from typing import Annotated, List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


class Settings(BaseModel):
    """Runtime configuration for the auth service."""

    environment: Annotated[str, Field(default="development")]
    jwt_secret: Annotated[str, Field(default="")]
    jwt_refresh_secret: Annotated[str, Field(default="")]
    access_token_expire_minutes: Annotated[int, Field(default=15, gt=0)]
    refresh_token_expire_days: Annotated[int, Field(default=7, gt=0)]

    # Trusted identity provider for the callback exchange
    external_identity_secret: Annotated[Optional[str], Field(default=None)]
    external_identity_audience: Annotated[str, Field(default="authenticated")]

    redis_url: Annotated[Optional[str], Field(default=None)]
    database_connection_string: Annotated[Optional[str], Field(default=None)]
    database_name: Annotated[str, Field(default="campushub")]

    require_email_verification: Annotated[bool, Field(default=False)]
    bcrypt_rounds: Annotated[int, Field(default=12, ge=4, le=31)]

    login_rate_limit_points: Annotated[int, Field(default=5, gt=0)]
    login_rate_limit_duration: Annotated[int, Field(default=15 * 60, gt=0)]  # seconds
    login_rate_limit_block: Annotated[int, Field(default=15 * 60, ge=0)]  # seconds
    global_rate_limit_points: Annotated[int, Field(default=100, gt=0)]
    global_rate_limit_duration: Annotated[int, Field(default=15 * 60, gt=0)]  # seconds
    rate_limit_fail_open: Annotated[bool, Field(default=True)]

    cors_origins: Annotated[List[str], Field(default=["http://localhost:5173"])]
    logfire_token: Annotated[Optional[str], Field(default=None)]

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def access_token_ttl_seconds(self) -> int:
        return self.access_token_expire_minutes * 60

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self.refresh_token_expire_days * 24 * 3600

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables (and a `.env` file if present)."""
        cors_origins = os.getenv("CORS_ORIGINS")

        return cls(
            environment=os.getenv("ENVIRONMENT", "development"),
            jwt_secret=os.getenv("JWT_SECRET", ""),
            jwt_refresh_secret=os.getenv("JWT_REFRESH_SECRET", ""),
            access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 15),
            refresh_token_expire_days=_env_int("REFRESH_TOKEN_EXPIRE_DAYS", 7),
            external_identity_secret=os.getenv("EXTERNAL_IDENTITY_SECRET") or None,
            external_identity_audience=os.getenv(
                "EXTERNAL_IDENTITY_AUDIENCE", "authenticated"
            ),
            redis_url=os.getenv("REDIS_URL") or None,
            database_connection_string=os.getenv("DATABASE_CONNECTION_STRING") or None,
            database_name=os.getenv("DATABASE_NAME", "campushub"),
            require_email_verification=_env_bool("REQUIRE_EMAIL_VERIFICATION", False),
            bcrypt_rounds=_env_int("BCRYPT_ROUNDS", 12),
            login_rate_limit_points=_env_int("LOGIN_RATE_LIMIT_POINTS", 5),
            login_rate_limit_duration=_env_int("LOGIN_RATE_LIMIT_DURATION", 15 * 60),
            login_rate_limit_block=_env_int("LOGIN_RATE_LIMIT_BLOCK", 15 * 60),
            global_rate_limit_points=_env_int("GLOBAL_RATE_LIMIT_POINTS", 100),
            global_rate_limit_duration=_env_int("GLOBAL_RATE_LIMIT_DURATION", 15 * 60),
            rate_limit_fail_open=_env_bool("RATE_LIMIT_FAIL_OPEN", True),
            cors_origins=(
                [origin.strip() for origin in cors_origins.split(",") if origin.strip()]
                if cors_origins
                else ["http://localhost:5173"]
            ),
            logfire_token=os.getenv("LOGFIRE_WRITE_TOKEN") or None,
        )
