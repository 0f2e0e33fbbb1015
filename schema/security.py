"""Defines schema of requests and responses related to security"""

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field
from typing import Annotated, Optional

from models.helpers import UserRole

from .users import UserSummary


class AccessClaims(BaseModel):
    """Identity data embedded in an access token."""

    subject_id: str
    email: str
    role: UserRole


class AccessTokenClaims(AccessClaims):
    """Claims recovered from a verified access token."""

    issued_at: datetime
    expires_at: datetime
    jti: str


class RefreshTokenClaims(BaseModel):
    """Claims recovered from a verified refresh token."""

    subject_id: str
    issued_at: datetime
    expires_at: datetime
    jti: str


class ExternalIdentity(BaseModel):
    """Identity asserted by a trusted external identity provider."""

    subject: str
    email: EmailStr
    email_verified: bool = False
    full_name: Optional[str] = None


class RefreshTokenRecord(BaseModel):
    """Durable refresh-token record owned by the refresh token store."""

    token: str
    user_id: str
    expires_at: datetime


class AuthResult(BaseModel):
    """Outcome of a successful credential flow."""

    user: UserSummary
    access_token: str
    refresh_token: Optional[str] = None


class AuthResponse(BaseModel):
    """Tokens plus the user they were issued to."""

    user: UserSummary
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"
    expires_in: int  # Access token expiry in seconds


class RefreshTokenRequest(BaseModel):
    """Model for refresh and logout requests. The token may come from a cookie instead."""

    refresh_token: Annotated[Optional[str], Field(default=None, max_length=4096)]


class ExternalIdentityRequest(BaseModel):
    """Callback payload carrying the identity provider's signed assertion."""

    assertion: Annotated[str, Field(min_length=1, max_length=8192)]


class RateLimitResult(BaseModel):
    """Outcome of consuming one point from a rate limiter."""

    allowed: bool
    retry_after_seconds: int = 0
    remaining: int = 0


class MessageResponse(BaseModel):
    message: str
