"""In-process repository used for local development and tests."""

import secrets

from datetime import datetime, timezone
from threading import Lock
from typing import Dict, List, Optional, Tuple

from models.helpers import UserRole
from models.users import StudentProfile
from schema.security import RefreshTokenRecord
from schema.users import UserRecord
from utils.errors import ConflictError, NotFoundError

from .base import UserRepository


class MemoryUserRepository(UserRepository):
    """Keeps accounts and refresh tokens in dictionaries guarded by a lock.

    Records are copied on the way in and out so callers never share state
    with the store.
    """

    def __init__(self):
        self._lock = Lock()
        self._users: Dict[str, UserRecord] = {}
        self._ids_by_email: Dict[str, str] = {}
        self._refresh_tokens: Dict[str, RefreshTokenRecord] = {}

    def _insert_user(
        self,
        email: str,
        password_hash: Optional[str],
        profile: StudentProfile,
        role: UserRole,
        email_verified: bool,
    ) -> UserRecord:
        user = UserRecord(
            id=secrets.token_hex(12),
            email=email,
            password_hash=password_hash,
            role=role,
            email_verified=email_verified,
            created_at=datetime.now(timezone.utc),
            profile=profile.model_copy(deep=True),
        )
        self._users[user.id] = user
        self._ids_by_email[email] = user.id
        return user

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self._lock:
            user_id = self._ids_by_email.get(email)
            if user_id is None:
                return None
            return self._users[user_id].model_copy(deep=True)

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        with self._lock:
            user = self._users.get(user_id)
            return user.model_copy(deep=True) if user else None

    async def create_user(
        self,
        email: str,
        password_hash: Optional[str],
        profile: StudentProfile,
        role: UserRole = UserRole.STUDENT,
        email_verified: bool = False,
    ) -> UserRecord:
        with self._lock:
            if email in self._ids_by_email:
                raise ConflictError("User already exists")
            user = self._insert_user(email, password_hash, profile, role, email_verified)
            return user.model_copy(deep=True)

    async def update_user(self, user_id: str, **fields) -> UserRecord:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFoundError("User not found")

            new_email = fields.get("email")
            if new_email is not None and new_email != user.email:
                if new_email in self._ids_by_email:
                    raise ConflictError("Email is already in use")
                del self._ids_by_email[user.email]
                self._ids_by_email[new_email] = user_id

            updated = user.model_copy(update=fields, deep=True)
            self._users[user_id] = updated
            return updated.model_copy(deep=True)

    async def find_or_create_user(
        self, email: str, profile: StudentProfile, email_verified: bool = False
    ) -> Tuple[UserRecord, bool]:
        with self._lock:
            user_id = self._ids_by_email.get(email)
            if user_id is not None:
                return self._users[user_id].model_copy(deep=True), False
            user = self._insert_user(email, None, profile, UserRole.STUDENT, email_verified)
            return user.model_copy(deep=True), True

    async def add_refresh_token(
        self, token: str, user_id: str, expires_at: datetime
    ) -> RefreshTokenRecord:
        with self._lock:
            if token in self._refresh_tokens:
                raise ConflictError("Refresh token already exists")
            record = RefreshTokenRecord(token=token, user_id=user_id, expires_at=expires_at)
            self._refresh_tokens[token] = record
            return record.model_copy()

    async def get_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        with self._lock:
            record = self._refresh_tokens.get(token)
            return record.model_copy() if record else None

    async def delete_refresh_token(self, token: str) -> bool:
        with self._lock:
            return self._refresh_tokens.pop(token, None) is not None

    async def delete_user_refresh_tokens(self, user_id: str) -> int:
        with self._lock:
            doomed = [
                token
                for token, record in self._refresh_tokens.items()
                if record.user_id == user_id
            ]
            for token in doomed:
                del self._refresh_tokens[token]
            return len(doomed)

    async def list_user_refresh_tokens(self, user_id: str) -> List[RefreshTokenRecord]:
        with self._lock:
            return [
                record.model_copy()
                for record in self._refresh_tokens.values()
                if record.user_id == user_id
            ]
