"""Contains all security related helper functions
"""

from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer

from passlib.context import CryptContext

from typing import Annotated, Optional

from models.helpers import TokenType, UserRole
from repositories.base import UserRepository
from schema.users import UserRecord
from utils.config import Settings
from utils.errors import ForbiddenError, UnauthorizedError

from .tokens import TokenCodec

ACCESS_TOKEN_COOKIE = "accessToken"
REFRESH_TOKEN_COOKIE = "refreshToken"

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="api/v1/auth/login", auto_error=False)


def get_password_context(rounds: int = 12) -> CryptContext:
    """Build a bcrypt context with the given cost factor."""
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


def verify_password(
    plain_password: str, hashed_password: str, context: CryptContext
) -> bool:
    """Verifies that `plain_password` and `hashed_password` are equal.

    Args:
        plain_password (str): The plain text password to verify.
        hashed_password (str): The hashed password to compare against.
        context (CryptContext): Context holding the hashing policy.

    Returns:
        bool: True if the passwords match, False otherwise.
    """
    try:
        return context.verify(plain_password, hashed_password)
    except ValueError:
        # Unrecognized or malformed hash
        return False


def get_password_hash(password: str, context: CryptContext) -> str:
    """Generates a hash for the given password.

    Args:
        password (str): The plain text password to hash.
        context (CryptContext): Context holding the hashing policy.

    Returns:
        str: The hashed password.
    """
    return context.hash(password)


def get_client_ip(request: Request) -> str:
    """Extract the client identifier used to key rate limits.

    Uses the left-most X-Forwarded-For entry if available (for proxied requests),
    otherwise falls back to the direct client IP. Only trustworthy when the proxy
    in front of the service overwrites the header.

    Args:
        request: FastAPI Request object

    Returns:
        Client identifier string (typically IP address)
    """
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # X-Forwarded-For can contain multiple IPs, take the first one
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    return request.client.host if request.client else "unknown"


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_repository(request: Request) -> UserRepository:
    return request.app.state.repository


def get_token_codec(request: Request) -> TokenCodec:
    return request.app.state.token_codec


async def get_current_user(
    request: Request,
    bearer_token: Annotated[Optional[str], Depends(oauth2_scheme)],
    repository: Annotated[UserRepository, Depends(get_repository)],
    codec: Annotated[TokenCodec, Depends(get_token_codec)],
) -> UserRecord:
    """Get the current user from the access token.

    The token is read from the Authorization header first and from the
    `accessToken` cookie otherwise.

    Raises:
        UnauthorizedError: Raised when the token is missing, invalid or expired,
            or when the user no longer exists.
        ForbiddenError: Raised when the account has been deactivated.

    Returns:
        UserRecord: The authenticated user.
    """
    token = bearer_token or request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        raise UnauthorizedError("Authentication required")

    claims = codec.verify(token, TokenType.ACCESS)
    if claims is None:
        raise UnauthorizedError("Invalid or expired access token")

    user = await repository.get_user_by_id(claims.subject_id)
    if user is None:
        raise UnauthorizedError("User not found")

    if not user.is_active:
        raise ForbiddenError()

    return user


def require_role(*roles: UserRole):
    """Dependency factory that only lets users with one of `roles` through."""

    async def check_role(
        current_user: Annotated[UserRecord, Depends(get_current_user)],
    ) -> UserRecord:
        if current_user.role not in roles:
            raise ForbiddenError("Insufficient permissions")
        return current_user

    return check_role


require_admin = require_role(UserRole.ADMIN)
