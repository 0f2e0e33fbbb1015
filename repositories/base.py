"""Data-access interface consumed by the session layer."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from models.helpers import UserRole
from models.users import StudentProfile
from schema.security import RefreshTokenRecord
from schema.users import UserRecord


class UserRepository(ABC):
    """Persistence collaborator for accounts and refresh-token records.

    Implementations raise `ConflictError` on unique-key violations and
    `NotFoundError` when an update targets a missing account.
    """

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    async def create_user(
        self,
        email: str,
        password_hash: Optional[str],
        profile: StudentProfile,
        role: UserRole = UserRole.STUDENT,
        email_verified: bool = False,
    ) -> UserRecord:
        """Insert an account together with its profile in one write."""

    @abstractmethod
    async def update_user(self, user_id: str, **fields) -> UserRecord:
        ...

    @abstractmethod
    async def find_or_create_user(
        self, email: str, profile: StudentProfile, email_verified: bool = False
    ) -> Tuple[UserRecord, bool]:
        """Return the account for `email`, creating it when missing.

        Returns:
            The account and whether it was created by this call.
        """

    @abstractmethod
    async def add_refresh_token(
        self, token: str, user_id: str, expires_at: datetime
    ) -> RefreshTokenRecord:
        ...

    @abstractmethod
    async def get_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        ...

    @abstractmethod
    async def delete_refresh_token(self, token: str) -> bool:
        """Delete the record for `token`.

        Returns:
            True only for the caller whose delete removed the record.
        """

    @abstractmethod
    async def delete_user_refresh_tokens(self, user_id: str) -> int:
        ...

    @abstractmethod
    async def list_user_refresh_tokens(self, user_id: str) -> List[RefreshTokenRecord]:
        ...
