"""Signing and verification of access, refresh and external identity tokens."""

import secrets

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from pydantic import ValidationError

from models.helpers import TokenType
from schema.security import (
    AccessClaims,
    AccessTokenClaims,
    ExternalIdentity,
    RefreshTokenClaims,
)
from utils.config import Settings
from utils.errors import ConfigurationError

ALGORITHM = "HS256"


class TokenCodec:
    """Stateless codec for the tokens handed out by the session manager.

    Access and refresh tokens are signed with distinct secrets so that one can
    never be accepted in place of the other.
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        external_secret: str | None = None,
        external_audience: str = "authenticated",
    ):
        if not access_secret:
            raise ConfigurationError("JWT_SECRET is not configured")
        if not refresh_secret:
            raise ConfigurationError("JWT_REFRESH_SECRET is not configured")
        if access_secret == refresh_secret:
            raise ConfigurationError("JWT_SECRET and JWT_REFRESH_SECRET must differ")

        self._secrets = {
            TokenType.ACCESS: access_secret,
            TokenType.REFRESH: refresh_secret,
        }
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._external_secret = external_secret
        self._external_audience = external_audience

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            access_secret=settings.jwt_secret,
            refresh_secret=settings.jwt_refresh_secret,
            access_ttl=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_ttl=timedelta(days=settings.refresh_token_expire_days),
            external_secret=settings.external_identity_secret,
            external_audience=settings.external_identity_audience,
        )

    def _sign(self, token_type: TokenType, claims: dict, ttl: timedelta) -> str:
        issued_at = datetime.now(timezone.utc)
        payload = {
            **claims,
            "type": token_type.value,
            "jti": secrets.token_urlsafe(16),  # Unique per token, even within the same second
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + ttl).timestamp()),
        }
        return jwt.encode(payload, self._secrets[token_type], algorithm=ALGORITHM)

    def issue_access(self, claims: AccessClaims) -> str:
        """Create a signed access token for `claims`."""
        return self._sign(
            TokenType.ACCESS,
            {"sub": claims.subject_id, "email": claims.email, "role": claims.role.value},
            self.access_ttl,
        )

    def issue_refresh(self, subject_id: str) -> str:
        """Create a signed refresh token for `subject_id`."""
        return self._sign(TokenType.REFRESH, {"sub": subject_id}, self.refresh_ttl)

    def refresh_expires_at(self) -> datetime:
        """Expiry to store alongside a refresh token minted now."""
        return datetime.now(timezone.utc) + self.refresh_ttl

    def verify(
        self, token: str, expected_type: TokenType
    ) -> AccessTokenClaims | RefreshTokenClaims | None:
        """Verify signature, expiry and type of `token`.

        Returns:
            The token claims, or None when the token is invalid for any reason.
        """
        if not token:
            return None

        try:
            payload = jwt.decode(
                token,
                self._secrets[expected_type],
                algorithms=[ALGORITHM],
                options={"require_exp": True, "require_iat": True, "require_sub": True},
            )
        except JWTError:
            return None

        if payload.get("type") != expected_type.value:
            return None

        try:
            issued_at = datetime.fromtimestamp(payload["iat"], tz=timezone.utc)
            expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)

            if expected_type is TokenType.ACCESS:
                return AccessTokenClaims(
                    subject_id=payload["sub"],
                    email=payload["email"],
                    role=payload["role"],
                    issued_at=issued_at,
                    expires_at=expires_at,
                    jti=payload["jti"],
                )

            return RefreshTokenClaims(
                subject_id=payload["sub"],
                issued_at=issued_at,
                expires_at=expires_at,
                jti=payload["jti"],
            )
        except (KeyError, TypeError, ValueError, ValidationError):
            return None

    def verify_external_identity(self, assertion: str) -> ExternalIdentity | None:
        """Verify an identity assertion minted by the trusted identity provider.

        Returns:
            The asserted identity, or None when external sign-in is not configured
            or the assertion does not verify.
        """
        if not self._external_secret or not assertion:
            return None

        try:
            payload = jwt.decode(
                assertion,
                self._external_secret,
                algorithms=[ALGORITHM],
                audience=self._external_audience,
                options={"require_aud": True, "require_exp": True, "require_sub": True},
            )
        except JWTError:
            return None

        metadata = payload.get("user_metadata")
        if not isinstance(metadata, dict):
            metadata = {}

        try:
            return ExternalIdentity(
                subject=payload["sub"],
                email=payload["email"],
                email_verified=bool(
                    payload.get("email_verified") or payload.get("email_confirmed_at")
                ),
                full_name=metadata.get("full_name") or payload.get("name"),
            )
        except (KeyError, ValidationError):
            return None
