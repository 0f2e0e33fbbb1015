"""
Refresh token store with single-use rotation.
A refresh token is only exchangeable while it verifies cryptographically and
its durable record still exists.
"""

import logfire

from datetime import datetime, timezone
from typing import Optional

from models.helpers import TokenType
from repositories.base import UserRepository
from schema.security import RefreshTokenRecord

from .tokens import TokenCodec


class RefreshTokenStore:
    """Owns the durable refresh-token records."""

    def __init__(self, repository: UserRepository, codec: TokenCodec):
        self.repository = repository
        self.codec = codec

    async def persist(
        self, token: str, subject_id: str, expires_at: datetime
    ) -> RefreshTokenRecord:
        """Store a freshly minted refresh token."""
        return await self.repository.add_refresh_token(token, subject_id, expires_at)

    async def lookup(self, token: str) -> Optional[RefreshTokenRecord]:
        """Fetch the record for `token`. Expired records count as missing."""
        record = await self.repository.get_refresh_token(token)
        if record is None:
            return None
        if record.expires_at <= datetime.now(timezone.utc):
            return None
        return record

    async def revoke(self, token: str) -> None:
        """Delete the record for `token`. Unknown tokens are ignored."""
        await self.repository.delete_refresh_token(token)

    async def revoke_all(self, subject_id: str) -> int:
        """Delete every record of `subject_id`, e.g. after a password change."""
        revoked = await self.repository.delete_user_refresh_tokens(subject_id)
        logfire.info(f"Revoked {revoked} refresh tokens for user {subject_id}")
        return revoked

    async def consume(self, token: str) -> bool:
        """Atomically claim `token` for rotation.

        Only one of several concurrent callers presenting the same token gets
        True; the others must treat the token as already used.
        """
        return await self.repository.delete_refresh_token(token)

    async def is_valid(self, token: str) -> Optional[str]:
        """Return the subject of `token` if it verifies and is still on record."""
        claims = self.codec.verify(token, TokenType.REFRESH)
        if claims is None:
            return None

        record = await self.lookup(token)
        if record is None or record.user_id != claims.subject_id:
            return None

        return claims.subject_id
